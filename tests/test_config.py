import pytest

from drugbind import config as config_module
from drugbind.config import BatchSettings, PredictorConfig, _env_overrides, config_from_dict, load_config


@pytest.fixture
def fresh_config():
    load_config.cache_clear()
    yield
    load_config.cache_clear()


def test_defaults():
    settings = BatchSettings()
    assert settings.max_concurrent == 3
    assert settings.row_timeout_seconds == 60.0
    assert settings.cancel_mode == "abandon"
    assert PredictorConfig().simulated


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_concurrent": 0},
        {"row_timeout_seconds": 0},
        {"cancel_mode": "ignore"},
        {"pk_min": 10, "pk_max": 5},
    ],
)
def test_invalid_batch_settings(kwargs):
    with pytest.raises(ValueError):
        BatchSettings(**kwargs)


def test_config_from_dict_coerces_strings(tmp_path):
    cfg = config_from_dict(
        {
            "paths": {"project_root": str(tmp_path), "state_dir": "state"},
            "predictor": {"base_url": "http://model:8000/ ", "timeout_seconds": "30"},
            "batch": {"max_concurrent": "5", "row_timeout_seconds": "12.5", "cancel_mode": "Settle"},
            "log_level": "debug",
        }
    )
    assert cfg.paths.state_dir == tmp_path / "state"
    assert cfg.paths.history_path == tmp_path / "state" / "prediction_history.json"
    assert cfg.predictor.base_url == "http://model:8000"
    assert not cfg.predictor.simulated
    assert cfg.predictor.timeout_seconds == 30.0
    assert cfg.batch.max_concurrent == 5
    assert cfg.batch.row_timeout_seconds == 12.5
    assert cfg.batch.cancel_mode == "settle"
    assert cfg.log_level == "DEBUG"


def test_env_overrides():
    overrides = _env_overrides(
        {
            "DRUGBIND_PREDICTOR_URL": "http://model",
            "DRUGBIND_MAX_CONCURRENT": "7",
            "DRUGBIND_SIMULATED": "yes",
        }
    )
    assert overrides["predictor"]["base_url"] == ""
    assert overrides["batch"]["max_concurrent"] == "7"


def test_load_config_reads_yaml_then_env(tmp_path, monkeypatch, fresh_config):
    cfg_file = tmp_path / "drugbind.yaml"
    cfg_file.write_text(
        "paths:\n"
        "  state_dir: ${DRUGBIND_TEST_STATE}\n"
        "batch:\n"
        "  max_concurrent: 4\n"
        "  row_timeout_seconds: 20\n"
    )
    monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(cfg_file))
    monkeypatch.setenv("DRUGBIND_TEST_STATE", str(tmp_path / "from-yaml"))
    monkeypatch.delenv("DRUGBIND_STATE_DIR", raising=False)
    monkeypatch.setenv("DRUGBIND_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("DRUGBIND_ROW_TIMEOUT", "9")

    cfg = load_config()
    assert cfg.paths.state_dir == tmp_path / "from-yaml"
    assert cfg.batch.max_concurrent == 4
    assert cfg.batch.row_timeout_seconds == 9.0
    assert cfg.paths.state_dir.is_dir()
    assert (tmp_path / "logs").is_dir()


def test_non_mapping_yaml_is_rejected(tmp_path, monkeypatch, fresh_config):
    cfg_file = tmp_path / "bad.yaml"
    cfg_file.write_text("- just\n- a list\n")
    monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(cfg_file))
    with pytest.raises(ValueError):
        load_config()
