import pytest

from swarm_provider.connection import DEFAULT_HOST, ConnectionSpec, NodeConnection, resolve
from swarm_provider.errors import InvalidConnectionConfig, InvalidCredentialFormat, MissingCredentialMaterial


def test_empty_host_defaults_to_local_socket():
    spec = resolve(NodeConnection())

    assert spec.host == DEFAULT_HOST
    assert spec.scheme == "unix"
    assert spec.ssh_opts == ()
    assert not spec.has_tls


def test_context_without_host_leaves_host_to_the_client():
    spec = resolve(NodeConnection(context="remote"))

    assert spec.host is None
    assert spec.context == "remote"
    assert spec.display_host == "context:remote"


def test_explicit_host_wins_over_context():
    spec = resolve(NodeConnection(host="tcp://10.0.0.2:2375", context="remote"))

    assert spec.host == "tcp://10.0.0.2:2375"
    assert spec.context == "remote"


def test_ssh_opts_are_kept_in_order():
    opts = ["-o", "StrictHostKeyChecking=no", "-i", "/keys/deployer"]

    spec = resolve(NodeConnection(host="ssh://deployer@10.0.0.2", ssh_opts=opts))

    assert spec.ssh_opts == tuple(opts)
    assert spec.uses_ssh


@pytest.mark.parametrize("ssh_opts", [None, []])
def test_missing_ssh_opts_resolve_to_empty(ssh_opts):
    spec = resolve(NodeConnection(host="ssh://deployer@10.0.0.2", ssh_opts=ssh_opts))

    assert spec.ssh_opts == ()


@pytest.mark.parametrize("host", ["localhost:2375", "ftp://10.0.0.2", "docker.sock"])
def test_unsupported_scheme_is_rejected(host):
    with pytest.raises(InvalidConnectionConfig):
        resolve(NodeConnection(host=host))


@pytest.mark.parametrize("field", ["cert_material", "key_material"])
def test_half_a_client_credential_is_rejected(field, tls_material):
    cert, key = tls_material
    value = cert if field == "cert_material" else key

    with pytest.raises(InvalidConnectionConfig) as excinfo:
        resolve(NodeConnection(host="tcp://10.0.0.2:2376", **{field: value}))

    assert isinstance(excinfo.value, MissingCredentialMaterial)


def test_half_a_credential_is_rejected_even_when_not_pem():
    with pytest.raises(MissingCredentialMaterial):
        resolve(NodeConnection(host="tcp://10.0.0.2:2376", cert_material="cert-content"))


@pytest.mark.parametrize("cert, key", [
    ("cert-content", "key-content"),
    ("-----BEGIN CERTIFICATE-----\nnot base64\n-----END CERTIFICATE-----\n", "key-content"),
])
def test_malformed_pem_is_rejected(cert, key):
    with pytest.raises(InvalidCredentialFormat):
        resolve(NodeConnection(host="tcp://10.0.0.2:2376", cert_material=cert, key_material=key))


def test_valid_certificate_with_malformed_key_is_rejected(tls_material):
    cert, _ = tls_material

    with pytest.raises(InvalidCredentialFormat):
        resolve(NodeConnection(host="tcp://10.0.0.2:2376", cert_material=cert, key_material="key-content"))


def test_valid_pair_is_preserved_unchanged(tls_material, ca_material):
    cert, key = tls_material

    spec = resolve(NodeConnection(host="tcp://10.0.0.2:2376", cert_material=cert, key_material=key,
                                  ca_material=ca_material))

    assert spec.cert_pem == cert.encode("utf-8")
    assert spec.key_pem == key.encode("utf-8")
    assert spec.ca_pem == ca_material.encode("utf-8")
    assert spec.has_inline_tls


def test_inline_material_and_cert_path_are_exclusive(tls_material):
    cert, key = tls_material

    with pytest.raises(InvalidConnectionConfig) as excinfo:
        resolve(NodeConnection(host="tcp://10.0.0.2:2376", cert_material=cert, key_material=key,
                               cert_path="/etc/docker/certs"))

    assert not isinstance(excinfo.value, MissingCredentialMaterial)


def test_cert_path_is_not_checked_at_resolution():
    spec = resolve(NodeConnection(host="tcp://10.0.0.2:2376", cert_path="/does/not/exist"))

    assert spec.cert_dir == "/does/not/exist"
    assert spec.has_tls
    assert not spec.has_inline_tls


def test_ca_material_alone_is_accepted(ca_material):
    spec = resolve(NodeConnection(host="tcp://10.0.0.2:2376", ca_material=ca_material))

    assert spec.ca_pem == ca_material.encode("utf-8")
    assert spec.cert_pem is None


def test_malformed_ca_material_is_rejected():
    with pytest.raises(InvalidCredentialFormat):
        resolve(NodeConnection(host="tcp://10.0.0.2:2376", ca_material="ca-content"))


def test_api_version_is_carried_over():
    spec = resolve(NodeConnection(host="tcp://10.0.0.2:2375", api_version="1.43"))

    assert spec.api_version == "1.43"


def test_node_connection_from_dict_ignores_unknown_keys():
    node = NodeConnection.from_dict({"host": "ssh://deployer@10.0.0.2", "ssh_opts": ["-v"], "__provider": "x"})

    assert node.host == "ssh://deployer@10.0.0.2"
    assert node.ssh_opts == ["-v"]
    assert node.cert_material is None
    assert NodeConnection.from_dict(None).to_dict() == NodeConnection().to_dict()


def test_private_key_stays_out_of_reprs(tls_material):
    cert, key = tls_material
    node = NodeConnection(host="tcp://10.0.0.2:2376", cert_material=cert, key_material=key)

    assert "PRIVATE KEY" not in repr(node)
    assert "PRIVATE KEY" not in repr(resolve(node))
    assert isinstance(resolve(node), ConnectionSpec)
