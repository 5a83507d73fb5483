import pytest

from swarm_provider.roles import Confidence, NodeListing, Role, RoleClassification, classify_token, confirm_role, \
    infer_role

from conftest import MANAGER_TOKEN, WORKER_TOKEN


@pytest.mark.parametrize("token, role", [
    (MANAGER_TOKEN, Role.MANAGER),
    (WORKER_TOKEN, Role.WORKER),
    ("SWMTKN-1-" + "a" * 30 + "-secret", Role.WORKER),
    ("SWMTKN-1-" + "a" * 50, Role.WORKER),
    ("not-a-swarm-token-" + "a" * 40, Role.WORKER),
    ("", Role.WORKER),
    (None, Role.WORKER),
])
def test_token_heuristic(token, role):
    classification = classify_token(token)

    assert classification.role is role
    assert classification.confidence is Confidence.HEURISTIC
    assert not classification.confirmed


def test_listing_overrides_heuristic():
    prior = classify_token(WORKER_TOKEN)
    listing = [NodeListing(id="other", role="worker"), NodeListing(id="n0de", role="manager")]

    classification = confirm_role(prior, "n0de", listing)

    assert classification == RoleClassification(Role.MANAGER, Confidence.CONFIRMED)


def test_listing_confirms_matching_heuristic():
    classification = confirm_role(classify_token(MANAGER_TOKEN), "n0de", [NodeListing(id="n0de", role="manager")])

    assert classification.role is Role.MANAGER
    assert classification.confirmed


def test_unlisted_node_keeps_prior_classification():
    prior = classify_token(MANAGER_TOKEN)

    assert confirm_role(prior, "n0de", [NodeListing(id="other", role="worker")]) is prior
    assert confirm_role(prior, "n0de", []) is prior


def test_unknown_listed_role_keeps_prior_classification():
    prior = classify_token(WORKER_TOKEN)

    assert confirm_role(prior, "n0de", [NodeListing(id="n0de", role="")]) is prior


def test_infer_role_without_listing_is_heuristic():
    assert infer_role(MANAGER_TOKEN, "n0de") == RoleClassification(Role.MANAGER, Confidence.HEURISTIC)


def test_infer_role_consults_node_listing():
    calls = []

    def list_nodes():
        calls.append(True)
        return [NodeListing(id="n0de", role="worker")]

    assert infer_role(MANAGER_TOKEN, "n0de", list_nodes) == RoleClassification(Role.WORKER, Confidence.CONFIRMED)
    assert calls == [True]
