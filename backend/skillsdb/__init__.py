# backend/skillsdb/__init__.py
"""
Import ORM models from each app so that Base.metadata.create_all() sees
every table. The model classes themselves live in skillsdb/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models            # organisations / users
from .apps.audit import models as audit_models                  # audit trail
from .apps.notifications import models as notifications_models  # in-app notifications
from .apps.competencies import models as competencies_models    # catalog + assignments
from .apps.development import models as development_models      # coaching activities + feedback
from .apps.assessments import models as assessments_models      # assessment events
from .apps.experts import models as experts_models              # expert networks + nominations
from .apps.learning import models as learning_models            # training module review

__all__ = [
    "accounts_models",
    "audit_models",
    "notifications_models",
    "competencies_models",
    "development_models",
    "assessments_models",
    "experts_models",
    "learning_models",
]
