"""Settings sources: defaults, YAML file and STORYREEL_ environment overrides."""

import pytest

from storyreel.config import Settings


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run each test where no config.yaml or .env exists unless it writes one."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_defaults():
    settings = Settings()

    assert settings.pipeline.video_poll_interval == 1.0
    assert settings.pipeline.video_poll_max == 120
    assert settings.pipeline.min_scenes == 1
    assert settings.pipeline.max_scenes == 99
    assert settings.storage.artifact_backend == "local"
    assert settings.transcode.video_codec == "libx264"


def test_yaml_file(isolated_cwd):
    (isolated_cwd / "config.yaml").write_text(
        "models:\n"
        "  planner_llm: ollama/llama3.1\n"
        "pipeline:\n"
        "  default_scene_count: 5\n"
        "storage:\n"
        "  local_root: /srv/artifacts\n"
    )

    settings = Settings()

    assert settings.models.planner_llm == "ollama/llama3.1"
    assert settings.pipeline.default_scene_count == 5
    assert str(settings.storage.local_root) == "/srv/artifacts"


def test_environment_overrides_yaml(isolated_cwd, monkeypatch):
    (isolated_cwd / "config.yaml").write_text("pipeline:\n  video_poll_max: 10\n")
    monkeypatch.setenv("STORYREEL_PIPELINE__VIDEO_POLL_MAX", "30")
    monkeypatch.setenv("STORYREEL_PROVIDERS__WAVESPEED_API_KEY", "ws-key")

    settings = Settings()

    assert settings.pipeline.video_poll_max == 30
    assert settings.providers.wavespeed_api_key == "ws-key"


def test_crf_out_of_range_rejected(monkeypatch):
    monkeypatch.setenv("STORYREEL_TRANSCODE__CRF", "60")

    with pytest.raises(ValueError):
        Settings()
