from __future__ import annotations

from sqlalchemy.orm import Session

from datagrid.models.attribute import Attribute


class EntityAttributesMixin:
    """Marks a mapped class as carrying EAV attributes.

    Attribute values live in ``attribute_values`` keyed by
    ``(entity_type, entity_id)``; the grid resolves filters on these
    attributes through that table instead of a native column.
    """

    @classmethod
    def eav_entity_type(cls) -> str:
        return cls.__name__

    @classmethod
    def available_attributes(cls, session: Session) -> list[Attribute]:
        return (
            session.query(Attribute)
            .filter(Attribute.namespace == cls.eav_entity_type())
            .order_by(Attribute.id.asc())
            .all()
        )
