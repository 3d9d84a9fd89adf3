from datetime import datetime

from sqlmodel import Field, SQLModel


class AccessCredential(SQLModel, table=True):
    """
    Course access for one purchaser. Only the bcrypt hash is used to check a
    code; code_ciphertext is a Fernet copy kept for re-delivery.
    """

    __tablename__ = "access_credentials"
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    phone: str | None = None
    full_name: str | None = None
    code_hash: str
    code_ciphertext: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(index=True)
    used_count: int = 0
    last_used_at: datetime | None = None
    failed_attempts: int = 0
    locked: bool = False
    locked_at: datetime | None = None
    active: bool = True  # False after an admin deactivation; never deleted
    updated_at: datetime | None = None
