from app.models.family import FamilyModel  # noqa: F401
from app.models.user import UserModel  # noqa: F401
