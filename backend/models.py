from sqlalchemy import Boolean, Column, Integer, String, Text, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator
import enum
from database import Base
from time_utils import as_utc, utc_now


class UTCDateTime(TypeDecorator):
    """
    Timestamp stored as UTC and always loaded as a timezone-aware UTC datetime.

    SQLite keeps no offset, so values are converted to UTC before writing
    and tagged as UTC again when read back.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        value = as_utc(value)
        if value is not None and dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        return as_utc(value)


class UserRole(str, enum.Enum):
    admin = "Admin"
    client = "Client"
    runner = "Runner"


DEFAULT_STATUS = "Pending"
COMPLETED_STATUS = "Completed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, name="user_role", native_enum=False), nullable=False, default=UserRole.client)
    created_at = Column(UTCDateTime(), default=utc_now)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # No back-collections: user deletion is governed by the FK RESTRICT / SET NULL rules


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    scheduled_time = Column(UTCDateTime(), nullable=False)
    status = Column(String(50), nullable=False, default=DEFAULT_STATUS)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    runner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(UTCDateTime(), default=utc_now)
    updated_at = Column(UTCDateTime(), default=utc_now, onupdate=utc_now)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    client = relationship("User", foreign_keys=[client_id])
    runner = relationship("User", foreign_keys=[runner_id])
    items = relationship(
        "TaskItem",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TaskItem.id",
    )

    @property
    def client_username(self):
        return self.client.username if self.client else None

    @property
    def runner_username(self):
        return self.runner.username if self.runner else None


class TaskItem(Base):
    __tablename__ = "task_items"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    # Free text; no transition graph is enforced
    status = Column(String(50), nullable=False, default=DEFAULT_STATUS)
    created_at = Column(UTCDateTime(), default=utc_now)
    updated_at = Column(UTCDateTime(), default=utc_now, onupdate=utc_now)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    task = relationship("Task", back_populates="items")
    status_logs = relationship(
        "StatusLog",
        back_populates="task_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class StatusLog(Base):
    __tablename__ = "status_logs"

    id = Column(Integer, primary_key=True, index=True)
    task_item_id = Column(Integer, ForeignKey("task_items.id", ondelete="CASCADE"), nullable=False, index=True)
    runner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(String(50), nullable=True)
    comment = Column(Text, nullable=False, default="")
    created_at = Column(UTCDateTime(), default=utc_now, index=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    task_item = relationship("TaskItem", back_populates="status_logs")
    runner = relationship("User", foreign_keys=[runner_id])

    @property
    def runner_username(self):
        return self.runner.username if self.runner else None
