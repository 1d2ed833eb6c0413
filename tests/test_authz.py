import pytest

from settleup.services.authz import AuthorizationError, NotGroupMember, assert_group_member, is_group_member


class StubRepo:
    def __init__(self, members: dict[str, set[str]]) -> None:
        self.members = members
        self.queries: list[str] = []

    async def fetchval(self, query: str, *args: object) -> object:
        self.queries.append(query)
        group_id, user_id = args
        return user_id if user_id in self.members.get(group_id, set()) else None


@pytest.mark.asyncio
async def test_is_group_member():
    repo = StubRepo({"g1": {"alice", "bob"}})
    assert await is_group_member(repo, "alice", "g1") is True
    assert await is_group_member(repo, "alice", "g2") is False
    assert "group_members" in repo.queries[0]


@pytest.mark.asyncio
async def test_assert_group_member():
    repo = StubRepo({"g1": {"alice"}})
    await assert_group_member(repo, "alice", "g1")


@pytest.mark.asyncio
async def test_assert_group_member_denied():
    repo = StubRepo({"g1": {"alice"}})
    with pytest.raises(NotGroupMember) as exc_info:
        await assert_group_member(repo, "mallory", "g1")
    assert isinstance(exc_info.value, AuthorizationError)
    assert exc_info.value.user_id == "mallory"
