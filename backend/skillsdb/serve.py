import logging
import os
from typing import Dict, Optional

import uvicorn


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def _configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _ssl_options() -> Dict[str, Optional[str]]:
    names = {
        "ssl_certfile": "SSL_CERTFILE",
        "ssl_keyfile": "SSL_KEYFILE",
        "ssl_ca_certs": "SSL_CA_CERTS",
        "ssl_keyfile_password": "SSL_KEYFILE_PASSWORD",
    }
    return {option: os.getenv(env) for option, env in names.items() if os.getenv(env)}


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    log_level = os.getenv("LOG_LEVEL", "info")
    _configure_logging(log_level)

    uvicorn.run(
        "skillsdb.main:app",
        host=host,
        port=port,
        reload=_env_flag("RELOAD"),
        log_level=log_level,
        proxy_headers=True,
        forwarded_allow_ips=os.getenv("FORWARDED_ALLOW_IPS", "*"),
        **_ssl_options(),
    )


if __name__ == "__main__":
    main()
