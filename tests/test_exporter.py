"""Tests for parameter manifest export and the export CLI."""

import argparse
import json
import math

import numpy as np
import pytest
from scipy.io import wavfile

from chromagraph.core.offline import AnalyzerConfig, OfflineSpectralAnalyzer
from chromagraph.core.store import AnimatedParameter, NetworkStore
from chromagraph.export_cli import _parse_preset_binding, export_parameters, main
from chromagraph.io import serializer
from chromagraph.io.exporter import SCHEMA_VERSION, ParameterManifestExporter


@pytest.fixture
def audio(pure_sine):
    y, sr = pure_sine
    return OfflineSpectralAnalyzer(AnalyzerConfig(fps=30)).analyze(y, sr, duration=0.5)


@pytest.fixture
def store():
    store = NetworkStore()
    store.apply_preset("scale", "number-sine-osc")
    store.apply_preset("kick", "bars-kick-adaptive")
    return store


@pytest.fixture
def wav_path(tmp_path, make_sine):
    sr = 22050
    y = make_sine(110.0, 1.0, sr, amplitude=0.8)
    path = tmp_path / "tone.wav"
    wavfile.write(path, sr, (y * 32767).astype(np.int16))
    return path


class TestParameterManifestExporter:
    """Manifest building."""

    def test_manifest_structure(self, store, audio):
        params = [AnimatedParameter("scale", 0.0), AnimatedParameter("kick", 0.0)]
        manifest = ParameterManifestExporter().build_manifest(store, params, audio)

        meta = manifest["metadata"]
        assert meta["fps"] == 30
        assert meta["n_frames"] == 15
        assert meta["fft_size"] == 2048
        assert meta["sample_rate"] == 44100
        assert meta["schema_version"] == SCHEMA_VERSION

        assert len(manifest["frames"]) == 15
        first = manifest["frames"][0]
        assert set(first) == {"frame_index", "time", "values"}
        assert set(first["values"]) == {"scale", "kick"}

    def test_values_follow_frame_times(self, store, audio):
        params = [AnimatedParameter("scale", 0.0)]
        manifest = ParameterManifestExporter(precision=6).build_manifest(store, params, audio)
        for frame in manifest["frames"]:
            expected = math.sin(2 * math.pi * frame["time"])
            assert frame["values"]["scale"] == pytest.approx(expected, abs=1e-5)

    def test_static_parameter_exported(self, store, audio):
        params = [AnimatedParameter("unanimated", 0.75)]
        manifest = ParameterManifestExporter().build_manifest(store, params, audio)
        assert all(f["values"]["unanimated"] == 0.75 for f in manifest["frames"])

    def test_rounding(self):
        exporter = ParameterManifestExporter(precision=2)
        assert exporter._round(1.23456) == 1.23
        assert exporter._round(np.float32(0.5)) == 0.5
        assert exporter._round(math.nan) is None
        assert exporter._round(True) is True
        assert exporter._round("text") == "text"

    def test_progress(self, store, audio):
        reports = []
        ParameterManifestExporter().build_manifest(
            store, [AnimatedParameter("scale", 0.0)], audio,
            progress_callback=lambda pct, msg: reports.append(pct),
        )
        assert reports[-1] == 100

    def test_export_json(self, store, audio, tmp_path):
        path = ParameterManifestExporter().export_json(
            store, [AnimatedParameter("kick", 0.0)], audio, tmp_path / "out.json",
        )
        with open(path) as f:
            data = json.load(f)
        assert data["metadata"]["n_frames"] == 15
        assert all(0.0 <= fr["values"]["kick"] <= 1.0 for fr in data["frames"])


class TestExportParameters:
    """End-to-end export from an audio file."""

    def test_export_from_wav(self, wav_path, tmp_path):
        store = NetworkStore()
        store.apply_preset("scale", "number-sine-osc")
        reports = []

        path = export_parameters(
            wav_path, tmp_path / "params.json", store, fps=10,
            progress_callback=lambda pct, msg: reports.append(pct),
        )

        with open(path) as f:
            data = json.load(f)
        assert data["metadata"]["sample_rate"] == 22050
        assert data["metadata"]["n_frames"] == 10
        assert data["frames"][5]["time"] == pytest.approx(0.5)
        assert reports[0] == 0 and reports[-1] == 100
        assert reports == sorted(reports)

    def test_string_network_falls_back_to_empty_string(self, wav_path, tmp_path):
        store = NetworkStore()
        store.set_enabled("mode", True, "string")
        store.set_enabled("mode", False)

        path = export_parameters(wav_path, tmp_path / "params.json", store, fps=5)

        with open(path) as f:
            data = json.load(f)
        assert [fr["values"]["mode"] for fr in data["frames"]] == [""] * 5

    def test_progress_lines_without_terminal(self, wav_path, tmp_path, capsys):
        store = NetworkStore()
        store.apply_preset("scale", "number-sine-osc")
        export_parameters(wav_path, tmp_path / "params.json", store, fps=5)

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("  0% Loading audio")
        assert lines[-1].startswith("100% Complete!")


class TestCLI:
    """Command line entry point."""

    def test_preset_binding(self, wav_path, tmp_path):
        out = tmp_path / "out.json"
        main([str(wav_path), "-o", str(out), "-p", "scale=number-sine-osc", "-f", "10"])

        data = json.loads(out.read_text())
        assert data["metadata"]["n_frames"] == 10
        assert data["frames"][0]["values"] == {"scale": 0.0}

    def test_default_output_path(self, wav_path):
        main([str(wav_path), "-p", "scale=number-sine-osc", "-f", "5"])
        assert (wav_path.parent / "tone_parameters.json").exists()

    def test_networks_file(self, wav_path, tmp_path):
        store = NetworkStore()
        store.apply_preset("glow", "number-average-volume")
        networks = serializer.save(store.networks, tmp_path / "networks.json")
        out = tmp_path / "out.json"

        main([str(wav_path), "-n", str(networks), "-o", str(out), "-f", "10"])

        values = [fr["values"]["glow"] for fr in json.loads(out.read_text())["frames"]]
        assert all(0.0 <= v <= 1.0 for v in values)

    def test_missing_audio_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path / "missing.wav"), "-p", "a=number-sine-osc"])
        assert exc.value.code == 1

    def test_unknown_preset_exits(self, wav_path):
        with pytest.raises(SystemExit) as exc:
            main([str(wav_path), "-p", "a=not-a-preset"])
        assert exc.value.code == 1

    def test_no_networks_exits(self, wav_path):
        with pytest.raises(SystemExit) as exc:
            main([str(wav_path)])
        assert exc.value.code == 1

    def test_bad_networks_file_exits(self, wav_path, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        with pytest.raises(SystemExit) as exc:
            main([str(wav_path), "-n", str(bad)])
        assert exc.value.code == 1

    def test_invalid_fft_size_exits(self, wav_path, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([str(wav_path), "-p", "a=number-sine-osc", "--fft-size", "1000",
                  "-o", str(tmp_path / "x.json")])
        assert exc.value.code == 1

    def test_parse_preset_binding(self):
        assert _parse_preset_binding("scale=number-sine-osc") == ("scale", "number-sine-osc")
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_preset_binding("no-equals-sign")
