"""
Model package — imports all models so Alembic and SQLAlchemy can
discover them automatically when ``flask db`` commands are run.

  - user.py       -> app_user, user_push_token
  - asset.py      -> asset, sequence_counter
  - allocation.py -> allocation
  - purchase.py   -> purchase_request
"""

from app.models.user import User, UserPushToken  # noqa: F401
from app.models.asset import Asset, SequenceCounter  # noqa: F401
from app.models.allocation import Allocation  # noqa: F401
from app.models.purchase import PurchaseRequest  # noqa: F401
