import pytest

from mobsf_proxy.config import Settings, mask_secret
from mobsf_proxy.errors import ConfigurationError
from mobsf_proxy.utils.policy_loader import load_completion_policy


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("MOBSF_API_KEY", "4f874bda5eeefe8c443247cb65dbdd26")
    return monkeypatch


def test_settings_from_env(env, tmp_path):
    env.setenv("MOBSF_URL", "http://mobsf:8000/")
    env.setenv("POLL_BASE_INTERVAL_MS", "2000")
    env.setenv("POLL_BACKOFF_FACTOR", "2.5")

    settings = Settings.from_env(dotenv_path=str(tmp_path / "absent.env"))

    assert settings.mobsf_url == "http://mobsf:8000"
    assert settings.poll_base_interval_ms == 2000
    assert settings.poll_backoff_factor == 2.5
    assert settings.poll_max_interval_ms == 60000
    assert settings.poll_error_threshold == 6


def test_bad_number_is_a_configuration_error(env, tmp_path):
    env.setenv("POLL_ERROR_THRESHOLD", "six")
    with pytest.raises(ConfigurationError) as excinfo:
        Settings.from_env(dotenv_path=str(tmp_path / "absent.env"))
    assert "POLL_ERROR_THRESHOLD" in excinfo.value.message


def test_mask_secret_hides_the_middle():
    assert mask_secret("4f874bda5eeefe8c443247cb65dbdd26") == "4f874b...dbdd26"
    assert mask_secret("short") == "*****"


def test_policy_defaults_without_file():
    policy = load_completion_policy(None)
    assert policy.is_ready("Generating Report")
    assert policy.failure_keywords == ()


def test_policy_from_yaml(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("ready_keywords:\n  - All Done\nfailure_keywords:\n  - Scan Failed\n")

    policy = load_completion_policy(str(path))

    assert policy.is_ready("all done")
    assert not policy.is_ready("Generating Report")
    assert policy.is_failure("SCAN FAILED: bad archive")


def test_policy_keeps_default_ready_keywords_when_omitted(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("failure_keywords: [aborted]\n")

    policy = load_completion_policy(str(path))

    assert policy.is_ready("Saving to Database")
    assert policy.is_failure("Aborted")


@pytest.mark.parametrize("content", ["ready_keywords: completed\n", "- a\n- b\n", "ready_keywords: [1, 2]\n",
                                     "ready_keywords: [unclosed\n"])
def test_invalid_policy_is_rejected(tmp_path, content):
    path = tmp_path / "policy.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        load_completion_policy(str(path))


def test_missing_policy_file_is_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        load_completion_policy(str(tmp_path / "nope.yaml"))
