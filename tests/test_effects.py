"""Tests for grading presets, post effects and the audio chain."""

import pytest

from space_recorder.compositor.effects import (
    VideoEffect,
    audio_ops,
    clamp_volume,
    post_effect_ops,
    webcam_ops,
)
from space_recorder.config import Compressor, NoiseGate
from space_recorder.executor.command_builder import Filter


def render(ops) -> str:
    return ",".join(Filter.from_op(op).to_string() for op in ops)


class TestVideoEffect:
    """Tests for VideoEffect parsing and preset text."""

    @pytest.mark.parametrize("name", ["dark_mode", "DarkMode", "dark-mode", " DARK_MODE "])
    def test_dark_mode_aliases(self, name):
        assert VideoEffect.parse(name) == VideoEffect.DARK_MODE

    def test_parse_case_insensitive(self):
        assert VideoEffect.parse("CyberPunk") == VideoEffect.CYBERPUNK
        assert VideoEffect.parse("none") == VideoEffect.NONE

    def test_parse_unknown(self):
        assert VideoEffect.parse("sepia") is None
        assert VideoEffect.parse(None) is None

    def test_none_has_no_ops(self):
        assert VideoEffect.NONE.filter_ops() == ()
        assert not VideoEffect.NONE.is_active

    def test_cyberpunk_text(self):
        assert render(VideoEffect.CYBERPUNK.filter_ops()) == (
            "curves=r='0/0 0.25/0.2 0.5/0.45 0.75/0.8 1/1'"
            ":g='0/0 0.25/0.25 0.5/0.5 0.75/0.75 1/1'"
            ":b='0/0 0.25/0.3 0.5/0.6 0.75/0.85 1/1',"
            "eq=saturation=1.4:contrast=1.1,"
            "colorbalance=rs=0.1:gs=-0.05:bs=0.2:rm=0.1:gm=-0.1:bm=0.15"
        )

    def test_dark_mode_text(self):
        assert render(VideoEffect.DARK_MODE.filter_ops()) == (
            "eq=brightness=0.05:contrast=1.05:saturation=1.1,"
            "unsharp=5:5:0.5:5:5:0"
        )


class TestWebcamOps:
    """Tests for the webcam chain."""

    def test_plain_chain(self):
        assert render(webcam_ops(False, VideoEffect.NONE, 0.3, 1280, 720)) == (
            "scale=1280:720,format=rgba,colorchannelmixer=aa=0.30"
        )

    def test_mirror_comes_first(self):
        ops = webcam_ops(True, VideoEffect.CYBERPUNK, 0.5, 640, 360)
        names = [op.name for op in ops]
        assert names[0] == "hflip"
        assert names.index("curves") > names.index("scale")
        assert names[-2:] == ["format", "colorchannelmixer"]


class TestPostEffects:
    """Tests for post-composition effects."""

    def test_none_enabled(self):
        assert post_effect_ops() == ()

    def test_fixed_order(self):
        ops = post_effect_ops(vignette=True, grain=True, live_badge=True, timestamp=True)
        assert [op.name for op in ops] == ["vignette", "noise", "drawtext", "drawtext"]
        assert "LIVE" in render(ops[2:3])
        assert "localtime" in render(ops[3:])

    def test_vignette_and_grain_text(self):
        assert render(post_effect_ops(vignette=True, grain=True)) == (
            "vignette=PI/5,noise=alls=10:allf=t"
        )

    def test_live_badge_text(self):
        assert render(post_effect_ops(live_badge=True)) == (
            "drawtext=text='LIVE':fontfile=/System/Library/Fonts/Helvetica.ttc"
            ":fontsize=24:fontcolor=white:box=1:boxcolor=red@0.8:boxborderw=8:x=20:y=20"
        )

    def test_timestamp_text(self):
        assert render(post_effect_ops(timestamp=True)) == (
            r"drawtext=text='%{localtime\:%H\\\:%M\\\:%S}'"
            ":fontfile=/System/Library/Fonts/Helvetica.ttc"
            ":fontsize=18:fontcolor=white@0.8:x=w-tw-20:y=20"
        )


class TestAudioOps:
    """Tests for the audio chain."""

    def test_passthrough(self):
        assert render(audio_ops()) == "anull"

    def test_gate_and_compressor_defaults(self):
        assert render(audio_ops(NoiseGate(), Compressor())) == (
            "agate=threshold=0.01:ratio=2:attack=20:release=250,"
            "acompressor=threshold=-20dB:ratio=4:attack=5:release=50"
        )

    def test_volume_only_when_not_unity(self):
        assert render(audio_ops(volume=1.0)) == "anull"
        assert render(audio_ops(volume=1.5)) == "volume=1.50"

    def test_volume_last(self):
        ops = audio_ops(NoiseGate(), None, 0.5)
        assert [op.name for op in ops] == ["agate", "volume"]

    @pytest.mark.parametrize("value,expected", [(-1, 0.0), (1.2, 1.2), (5, 2.0)])
    def test_clamp_volume(self, value, expected):
        assert clamp_volume(value) == expected
