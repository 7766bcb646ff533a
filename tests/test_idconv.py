import httpx
import pytest

from labprofile.services.idconv import IdConverter, parse_id_conversion_response
from labprofile.services.ncbi import NcbiApiError
from labprofile.services.throttle import RequestThrottle
from labprofile.settings import Settings


def _converter(tmp_path, handler, **settings_kwargs) -> IdConverter:
    settings = Settings(data_dir=tmp_path, **settings_kwargs)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IdConverter(client, settings, RequestThrottle(0))


@pytest.mark.asyncio
async def test_convert_dois_returns_records_with_errors_kept(tmp_path) -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(request.url.params)
        return httpx.Response(
            200,
            json={
                "status": "ok",
                "records": [
                    {"doi": "10.1/a", "pmid": "100", "pmcid": "PMC5"},
                    {"doi": "10.1/b", "errmsg": "invalid article id"},
                ],
            },
        )

    converter = _converter(tmp_path, handler, ncbi_api_key="secret", ncbi_email="lab@example.org")
    records = await converter.convert_dois_to_pmids(["10.1/a", "10.1/b"])

    assert records[0].pmid == "100"
    assert records[0].pmcid == "PMC5"
    assert records[1].pmid is None
    assert records[1].errmsg == "invalid article id"
    assert captured["ids"] == "10.1/a,10.1/b"
    assert captured["format"] == "json"
    assert captured["api_key"] == "secret"
    assert captured["email"] == "lab@example.org"


@pytest.mark.asyncio
async def test_batches_of_two_hundred(tmp_path) -> None:
    sizes: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sizes.append(len(request.url.params["ids"].split(",")))
        return httpx.Response(200, json={"records": []})

    converter = _converter(tmp_path, handler)
    await converter.convert_pmids_to_pmcids([str(n) for n in range(450)])
    assert sizes == [200, 200, 50]


@pytest.mark.asyncio
async def test_empty_input_skips_request(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("unexpected request")

    assert await _converter(tmp_path, handler).convert_ids([]) == []


@pytest.mark.asyncio
async def test_non_success_raises(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(NcbiApiError):
        await _converter(tmp_path, handler).convert_ids(["123"])


def test_parse_tolerates_malformed_payloads() -> None:
    assert parse_id_conversion_response(None) == []
    assert parse_id_conversion_response({"status": "error"}) == []
    records = parse_id_conversion_response({"records": [{"pmid": 12, "pmcid": ""}, "junk"]})
    assert len(records) == 1
    assert records[0].pmid == "12"
    assert records[0].pmcid is None
