from pydantic import BaseModel, SecretStr


class FirebaseModel(BaseModel, frozen=True):
    project_id: str | None = None
    """Google Cloud project, detected from the credentials if not set."""
    service_account: SecretStr | None = None
    """Service account key, as JSON. Application Default Credentials are used if not set."""
