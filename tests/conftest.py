import pytest

from scm_cert_utils import Issuer, RootCA


@pytest.fixture(scope="module")
def root_ca() -> RootCA:
    return RootCA.generate("Test")


@pytest.fixture()
def persisted_root(root_ca: RootCA, tmp_path):
    return root_ca.into_identity().persist(tmp_path / "Test")


@pytest.fixture()
def issuer(persisted_root) -> Issuer:
    cert_path, key_path = persisted_root
    return Issuer.load(cert_path, key_path)


@pytest.fixture()
def config_home(tmp_path, monkeypatch):
    path = tmp_path / "config"
    monkeypatch.setenv("SCM_CONFIG_DIR", str(path))
    return path
