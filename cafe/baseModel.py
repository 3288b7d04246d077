import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

from cafe.misc import Utilities

time = "%Y-%m-%dT%H:%M:%S.%f"
# Define the base class for ORM
Base = declarative_base()


class Lifecycle:
    """Soft-delete flag shared by every entity. Independent of any domain status."""

    ACTIVE = "Active"
    CANCELLED = "Cancelled"


class BaseModel:
    """
    Base class for all models in the ORM.

    Besides the identifier it carries the lifecycle flag used to filter every
    read, and the audit columns stamped by `UnitOfWork.touch` right before a
    row is persisted.
    """

    id = Column(String(36), primary_key=True)
    lifecycle = Column(
        Text,
        CheckConstraint("lifecycle IN ('Active', 'Cancelled')"),
        nullable=False,
        default=Lifecycle.ACTIVE,
    )
    created_at = Column(DateTime, default=Utilities.utcnow)
    created_by = Column(String(36), default=None)
    updated_at = Column(DateTime, default=Utilities.utcnow)
    updated_by = Column(String(36), default=None)

    def __init__(self, *args, **kwargs):
        """Initialization of the base model
        Args:
            *args: Unused
            **kwargs: Arbitrary keyword arguments
        """

        for key, value in kwargs.items():
            if key != "__class__":
                setattr(self, key, value)
        for key in ("created_at", "updated_at"):
            if type(kwargs.get(key)) is str:
                setattr(self, key, datetime.strptime(kwargs[key], time))
        if kwargs.get("id", None) is None:
            self.id = str(uuid.uuid4())
        if kwargs.get("lifecycle", None) is None:
            self.lifecycle = Lifecycle.ACTIVE

    def __str__(self):
        """String representation of the model"""
        return "[{:s}] ({:s}) {}".format(
            self.__class__.__name__, self.id, self.to_dict()
        )

    @property
    def is_cancelled(self):
        return self.lifecycle == Lifecycle.CANCELLED

    def to_dict(self):
        """
        Create a dictionary representation of the instance.
        Datetimes are rendered with the module time format, money as strings.
        :return: A dictionary representation of the instance.
        """
        new_dict = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = value.strftime(time)
            elif value is not None and not isinstance(value, (str, int, float, bool)):
                value = str(value)
            new_dict[column.key] = value
        new_dict["__class__"] = self.__class__.__name__
        return new_dict
