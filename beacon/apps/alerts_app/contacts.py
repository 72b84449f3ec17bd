import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Optional

from django.db import DatabaseError

from .exceptions import StoreUnavailable
from .models import EmergencyContact

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^[\d\s+()-]{7,20}$')


@dataclass(frozen=True)
class ContactInfo:
    key: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    relationship: Optional[str] = None

    @classmethod
    def from_model(cls, contact):
        return cls(
            key=str(contact.pk),
            name=contact.name,
            phone=contact.phone or None,
            email=contact.email or None,
            relationship=contact.relationship,
        )

    @classmethod
    def from_payload(cls, data):
        """Build a contact from validated dispatch request data."""
        phone = data.get('phone') or None
        email = (data.get('email') or '').strip().lower() or None
        key = data.get('id')
        if key in (None, ''):
            key = adhoc_contact_key(phone, email)
        return cls(
            key=str(key),
            name=data['name'],
            phone=phone,
            email=email,
            relationship=data.get('relationship'),
        )


def adhoc_contact_key(phone, email):
    digits = re.sub(r'\D', '', phone or '')
    raw = f"{digits}|{email or ''}"
    return 'adhoc:' + hashlib.sha1(raw.encode('utf-8')).hexdigest()[:20]


class ContactResolver:
    def resolve(self, owner_id):
        """Emergency contacts of `owner_id`. An empty list is a normal outcome."""
        try:
            contacts = [ContactInfo.from_model(c) for c in EmergencyContact.objects.filter(owner_id=owner_id)]
        except DatabaseError as e:
            logger.error(f"Could not load contacts for user {owner_id}: {e}", exc_info=True)
            raise StoreUnavailable() from e
        if not contacts:
            logger.info(f"User {owner_id} has no emergency contacts on file")
        return contacts
