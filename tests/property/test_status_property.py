from hypothesis import given
from hypothesis import strategies as st

from preview_agent.models.policy import PolicyKind
from preview_agent.models.project import ProjectStatus


@given(st.sampled_from([member.value for member in ProjectStatus]))
def test_project_status_values_are_lowercase(value: str) -> None:
    assert value == value.lower()


@given(st.sampled_from(list(PolicyKind)))
def test_policy_kind_round_trips_from_value(kind: PolicyKind) -> None:
    assert PolicyKind(kind.value) is kind
