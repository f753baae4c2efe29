"""Tests for pipeline configuration and the YAML config file."""

import pytest
import yaml

from space_recorder.compositor.effects import VideoEffect
from space_recorder.config import (
    AudioCapture,
    ConfigFile,
    OutputKind,
    OutputMode,
    OutputSpec,
    PipelineConfig,
    ScreenCapture,
    WindowBounds,
    default_config_path,
    dump_config_file,
    load_config_file,
    merge_overrides,
    write_default_config,
)
from space_recorder.errors import ConfigurationError


class TestPipelineConfigValidate:
    """Tests for PipelineConfig.validate."""

    def test_defaults_are_valid(self):
        assert PipelineConfig().validate() is not None

    @pytest.mark.parametrize("width,height", [(0, 720), (1280, 0), (8000, 720), (1280, -1)])
    def test_bad_resolution(self, width, height):
        config = PipelineConfig(output=OutputSpec(width=width, height=height))
        with pytest.raises(ConfigurationError, match="must be between"):
            config.validate()

    @pytest.mark.parametrize("framerate", [0, 241])
    def test_bad_framerate(self, framerate):
        with pytest.raises(ConfigurationError, match="framerate"):
            PipelineConfig(output=OutputSpec(framerate=framerate)).validate()

    def test_bad_screen_framerate(self):
        with pytest.raises(ConfigurationError, match="Screen framerate"):
            PipelineConfig(screen=ScreenCapture(framerate=0)).validate()

    @pytest.mark.parametrize("field", ["webcam_opacity", "ai_opacity"])
    @pytest.mark.parametrize("value", [-0.1, 1.1])
    def test_bad_opacity(self, field, value):
        with pytest.raises(ConfigurationError, match="opacity"):
            PipelineConfig(**{field: value}).validate()

    def test_negative_crossfade(self):
        with pytest.raises(ConfigurationError, match="Crossfade"):
            PipelineConfig(crossfade_ms=-1).validate()

    def test_recording_needs_path(self):
        config = PipelineConfig(output=OutputSpec(mode=OutputMode(OutputKind.RECORDING)))
        with pytest.raises(ConfigurationError, match="file path"):
            config.validate()


class TestPipelineConfigMutators:
    """Tests for the AI overlay mutators."""

    def test_set_ai_video_returns_previous(self):
        config = PipelineConfig(ai_video="a.mp4")
        assert config.set_ai_video("b.mp4") == "a.mp4"
        assert config.ai_video == "b.mp4"
        assert config.set_ai_video(None) == "b.mp4"
        assert not config.has_ai_video

    @pytest.mark.parametrize("value,expected", [(0.5, 0.5), (-2, 0.0), (9, 1.0)])
    def test_set_ai_opacity_clamps(self, value, expected):
        config = PipelineConfig(ai_opacity=0.3)
        assert config.set_ai_video_opacity(value) == pytest.approx(0.3)
        assert config.ai_opacity == expected


class TestCaptureDescriptors:
    """Tests for capture descriptors."""

    def test_window_crop_retina(self):
        screen = ScreenCapture(bounds=WindowBounds(5, 10, 100, 50), retina=True)
        assert screen.crop_op().args == (200, 100, 10, 20)

    def test_no_crop_without_bounds(self):
        assert ScreenCapture().crop_op() is None

    def test_refresh_bounds(self):
        screen = ScreenCapture()
        bounds = WindowBounds(0, 0, 10, 10)
        assert screen.refresh_bounds(bounds) is None
        assert screen.refresh_bounds(None) == bounds

    def test_audio_device_name(self):
        audio = AudioCapture(device="USB Mic", volume=5)
        assert audio.input_name == ":USB Mic"
        assert audio.volume == 2.0

    def test_output_mode_preview_flags(self):
        assert OutputMode.preview().wants_preview
        assert OutputMode.both("x.mp4").wants_preview
        assert not OutputMode.recording("x.mp4").wants_preview


class TestConfigFile:
    """Tests for the pydantic config file schema."""

    def test_defaults(self):
        config = ConfigFile().to_pipeline_config()
        assert config.webcam is not None
        assert config.audio is None
        assert config.output.resolution == (1280, 720)
        assert config.output.mode.kind == OutputKind.PREVIEW

    def test_full_mapping(self):
        data = {
            "capture": {"device": "2:none", "window": "Terminal", "retina": False},
            "webcam": {"device": "FaceTime", "mirror": True, "effect": "Dark-Mode", "opacity": 0.5},
            "audio": {"enabled": True, "device": "Mic", "volume": 1.5,
                      "noise_gate": True, "compressor": True},
            "effects": {"vignette": True, "timestamp": True},
            "output": {"resolution": "1920x1080", "framerate": 60, "record": "/tmp/out.mp4"},
            "overlay": {"opacity": 0.4, "crossfade_ms": 250},
        }
        config = ConfigFile.model_validate(data).to_pipeline_config()
        assert config.screen.device == "2:none"
        assert config.screen.window_app == "Terminal"
        assert config.screen.retina is False
        assert config.webcam.effect == VideoEffect.DARK_MODE
        assert config.webcam.mirror is True
        assert config.webcam_opacity == 0.5
        assert config.audio.noise_gate is not None
        assert config.audio.compressor is not None
        assert config.audio.volume == 1.5
        assert config.effects.has_post_effects
        assert config.output.resolution == (1920, 1080)
        assert config.output.mode == OutputMode.both("/tmp/out.mp4")
        assert config.ai_opacity == 0.4
        assert config.crossfade_ms == 250

    def test_record_without_preview(self):
        data = {"output": {"record": "/tmp/out.mp4", "preview": False}}
        config = ConfigFile.model_validate(data).to_pipeline_config()
        assert config.output.mode == OutputMode.recording("/tmp/out.mp4")

    def test_webcam_disabled(self):
        config = ConfigFile.model_validate({"webcam": {"enabled": False}}).to_pipeline_config()
        assert config.webcam is None

    def test_unknown_effect_rejected(self):
        with pytest.raises(ValueError, match="unknown effect"):
            ConfigFile.model_validate({"webcam": {"effect": "sepia"}})

    def test_bad_resolution_rejected(self):
        with pytest.raises(ValueError, match="resolution"):
            ConfigFile.model_validate({"output": {"resolution": "big"}})


class TestConfigFileIO:
    """Tests for loading and writing config files."""

    def test_missing_default_yields_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert default_config_path() == tmp_path / "space-recorder" / "config.yaml"
        assert load_config_file() == ConfigFile()

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config_file(tmp_path / "nope.yaml")

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("webcam:\n  mirror: true\noutput:\n  framerate: 24\n")
        loaded = load_config_file(path)
        assert loaded.webcam.mirror is True
        assert loaded.output.framerate == 24

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config_file(path) == ConfigFile()

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("webcam: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Failed to parse"):
            load_config_file(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config_file(path)

    def test_schema_violation(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("output:\n  framerate: fast\n")
        with pytest.raises(ConfigurationError, match="Invalid config file"):
            load_config_file(path)

    def test_unknown_section_warns(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text("telemetry:\n  enabled: true\n")
        with caplog.at_level("WARNING", logger="space_recorder"):
            assert load_config_file(path) == ConfigFile()
        assert "telemetry" in caplog.text

    def test_write_default_and_reload(self, tmp_path):
        path = write_default_config(tmp_path / "sub" / "config.yaml")
        assert path.exists()
        assert load_config_file(path) == ConfigFile()
        assert yaml.safe_load(dump_config_file(ConfigFile()))["overlay"]["crossfade_ms"] == 500

    def test_write_refuses_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("{}")
        with pytest.raises(ConfigurationError, match="already exists"):
            write_default_config(path)
        write_default_config(path, overwrite=True)
        assert "capture" in path.read_text()


class TestMergeOverrides:
    """Tests for merge_overrides."""

    def test_none_skipped(self):
        assert merge_overrides({"a": 1}, {"a": None}) == {"a": 1}

    def test_nested_merge(self):
        merged = merge_overrides(
            {"webcam": {"mirror": False, "device": "0"}},
            {"webcam": {"mirror": True, "device": None}},
        )
        assert merged == {"webcam": {"mirror": True, "device": "0"}}

    def test_does_not_mutate_input(self):
        data = {"webcam": {"mirror": False}}
        merge_overrides(data, {"webcam": {"mirror": True}})
        assert data == {"webcam": {"mirror": False}}
