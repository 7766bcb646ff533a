import asyncio

import pytest

from labprofile.services.throttle import RequestThrottle
from labprofile.settings import Settings


def test_delay_is_shorter_with_api_key(tmp_path) -> None:
    with_key = Settings(data_dir=tmp_path, ncbi_api_key="abc")
    without_key = Settings(data_dir=tmp_path)
    assert with_key.ncbi_delay_seconds == pytest.approx(0.11)
    assert without_key.ncbi_delay_seconds == pytest.approx(0.35)
    assert with_key.ncbi_delay_seconds < without_key.ncbi_delay_seconds


def test_ncbi_params_only_include_configured_values(tmp_path) -> None:
    assert Settings(data_dir=tmp_path).ncbi_params() == {"tool": "labprofile"}
    params = Settings(data_dir=tmp_path, ncbi_api_key="k", ncbi_email="e@x.org").ncbi_params()
    assert params == {"tool": "labprofile", "api_key": "k", "email": "e@x.org"}


def test_load_reads_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("LABPROFILE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("NCBI_API_KEY", "from-env")
    monkeypatch.setenv("ORCID_SANDBOX", "true")
    settings = Settings.load()
    assert settings.data_dir == tmp_path / "data"
    assert settings.ncbi_api_key == "from-env"
    assert settings.orcid_base_url() == "https://pub.sandbox.orcid.org"
    assert settings.orcid_base_url("token") == "https://api.sandbox.orcid.org"


@pytest.mark.asyncio
async def test_throttle_sleeps_configured_delay_before_each_call(tmp_path) -> None:
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)
        await asyncio.sleep(0)

    throttle = RequestThrottle.from_settings(Settings(data_dir=tmp_path, ncbi_api_key="k"), fake_sleep)
    await throttle.wait()
    await throttle.wait()
    assert delays == [pytest.approx(0.11), pytest.approx(0.11)]
    assert throttle.calls == 2
