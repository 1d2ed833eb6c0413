from __future__ import annotations

from typing import Protocol


class Repository(Protocol):
    async def fetchval(self, query: str, *args: object) -> object: ...


class AuthorizationError(PermissionError):
    pass


class NotGroupMember(AuthorizationError):
    def __init__(self, user_id: str, group_id: str) -> None:
        super().__init__(f"user {user_id} is not a member of group {group_id}")
        self.user_id = user_id
        self.group_id = group_id


async def is_group_member(repo: Repository, user_id: str, group_id: str) -> bool:
    member_id = await repo.fetchval(
        "SELECT user_id FROM group_members WHERE group_id = $1 AND user_id = $2",
        group_id,
        user_id,
    )
    return member_id is not None


async def assert_group_member(repo: Repository, user_id: str, group_id: str) -> None:
    if not await is_group_member(repo, user_id, group_id):
        raise NotGroupMember(user_id, group_id)
