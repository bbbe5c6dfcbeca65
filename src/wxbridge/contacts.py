from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .api import WebApi
from .emoji import parse_emoji
from .exceptions import DirectoryError, ProtocolError, TransportError

logger = logging.getLogger("wxbridge.contacts")

_GROUP_RE = re.compile(r"^@@|@chatroom$")


def is_group(username: str) -> bool:
    return bool(username) and bool(_GROUP_RE.search(username))


@dataclass(slots=True)
class Contact:
    """
    One directory entry.

    `username` is the session-scoped id the server uses everywhere
    (`@...` for accounts, `@@...` for groups). Groups additionally carry the
    encrypted room id needed to look up their members.
    """

    username: str
    nickname: str = ""
    remark_name: str = ""
    avatar_url: str = ""
    uin: str = ""
    encrypted_room_id: str = ""
    members: list[Contact] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return is_group(self.username)

    @property
    def display_name(self) -> str:
        return self.remark_name or self.nickname or self.username

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> Contact:
        members = [
            cls.from_wire(m) for m in d.get("MemberList") or [] if isinstance(m, dict)
        ]
        return cls(
            username=str(d.get("UserName") or ""),
            nickname=parse_emoji(d.get("NickName")),
            remark_name=parse_emoji(d.get("RemarkName")),
            avatar_url=str(d.get("HeadImgUrl") or ""),
            uin=str(d.get("Uin") or ""),
            encrypted_room_id=str(d.get("EncryChatRoomId") or ""),
            members=members,
        )


class ContactDirectory:
    """
    Username-keyed contact and group directory.

    The only mutations are `merge` (replace-by-username, last write wins) and
    the fetch operations that feed it.
    """

    def __init__(self, api: WebApi) -> None:
        self._api = api
        self._contacts: dict[str, Contact] = {}

    def __len__(self) -> int:
        return len(self._contacts)

    def __contains__(self, username: object) -> bool:
        return username in self._contacts

    def get(self, username: str) -> Contact | None:
        return self._contacts.get(username)

    def contacts(self) -> list[Contact]:
        return list(self._contacts.values())

    def display_name(self, username: str) -> str:
        c = self._contacts.get(username)
        return c.display_name if c else username

    def merge(self, contact: Contact) -> None:
        if not contact.username:
            return
        self._contacts[contact.username] = contact

    async def fetch_all(self) -> int:
        """
        Page through the full contact list until the server returns `Seq == 0`.

        Returns the number of entries received (before deduplication).
        """

        seq = 0
        received = 0
        while True:
            members, seq = await self._api.get_contacts(seq)
            for m in members:
                self.merge(Contact.from_wire(m))
            received += len(members)
            logger.debug("contact page: %d entries, next seq %d", len(members), seq)
            if seq == 0:
                break
        logger.info("directory loaded: %d contacts", len(self._contacts))
        return received

    async def _fetch_one(self, entry: dict[str, str], *, what: str) -> Contact:
        try:
            found = await self._api.batch_get_contact([entry])
        except (ProtocolError, TransportError) as e:
            raise DirectoryError(f"failed to get {what}: {e}") from e
        if not found:
            raise DirectoryError(f"failed to get {what}: empty contact list")
        contact = Contact.from_wire(found[0])
        if not contact.username:
            raise DirectoryError(f"failed to get {what}: contact without username")
        self.merge(contact)
        return contact

    async def fetch_group(self, group_username: str) -> Contact:
        return await self._fetch_one(
            {"UserName": group_username, "ChatRoomId": ""}, what=f"group {group_username}"
        )

    async def fetch_group_member(self, encrypted_room_id: str, member_username: str) -> Contact:
        return await self._fetch_one(
            {"UserName": member_username, "EncryChatRoomId": encrypted_room_id},
            what=f"group member {member_username}",
        )
