import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from karpoci.models import Shape, WrapShape
from karpoci.pricing import (
    MAX_FLOAT32,
    CurrencyCode,
    Item,
    PriceCatalog,
    PriceListSyncer,
    calculate,
    contain_memory,
    contain_nvme,
    contain_ocpu,
    float_equal,
    parse_shape,
)


def _item(category, name, metric, usd):
    return {
        "partNumber": "B0001",
        "displayName": name,
        "metricName": metric,
        "serviceCategory": category,
        "currencyCodeLocalizations": [
            {"currencyCode": "USD", "prices": [{"model": "PAY_AS_YOU_GO", "value": usd}]}
        ],
    }


VM = "Compute - Virtual Machine"
CATALOG_DOC = {
    "items": [
        _item(VM, "Compute - Standard - E4 - OCPU", "OCPU Per Hour", 0.025),
        _item(VM, "Compute - Standard - E4 - Memory", "Gigabyte Per Hour", 0.0015),
        _item(VM, "Compute - Standard - A1 - OCPU - Free", "OCPU Per Hour", 0),
        _item(VM, "Compute - Standard - X5 - OCPU", "OCPU Per Hour", 0.06),
        _item(VM, "Compute - Standard - B1 - 1 Month Commit", "OCPU Per Hour", 9),
        _item(VM, "Compute - Standard - B1 - Hourly Commit", "OCPU Per Hour", 0.5),
        _item(VM, "Compute - Standard - B1 - Extra", "OCPU Per Hour", 100),
        _item("Compute - GPU", "Compute - GPU - A10 - Per GPU", "GPU Per Hour", 2.0),
        _item(
            "Compute - Bare Metal",
            "Compute - Dense I/O - E5 - BM.DenseIO.E5.128 - Node Per Hour",
            "Node Per Hour",
            12.8,
        ),
    ]
}
CATALOG_JSON = json.dumps(CATALOG_DOC)


@pytest.fixture
def catalog():
    return PriceCatalog.from_json(CATALOG_JSON)


def _shape(name, calc_cpu=0, mem=0, **kwargs):
    return WrapShape(Shape(name, **kwargs), calc_cpu=calc_cpu, cal_mem_in_gbs=mem)


@pytest.mark.parametrize(
    "shape, expected",
    [
        (_shape("BM.GPU.A10.4", gpus=4), 8.0),
        (_shape("VM.Standard.E4.Flex", calc_cpu=2, mem=8), 0.037),
        (_shape("VM.Standard.A1.Flex", calc_cpu=2, mem=6), 0.0),
        (_shape("VM.Standard.B1.16", calc_cpu=32), 8.0),
        (_shape("BM.DenseIO.E5.128", calc_cpu=256, mem=1536), 12.8),
        (_shape("VM.Standard1.4", calc_cpu=8), 0.24),
    ],
)
def test_calculate_prices(catalog, shape, expected):
    price = calculate(shape, catalog)
    assert float_equal(price, expected, 1e-5)


def test_calculate_without_catalog_uses_whole_ocpus():
    assert calculate(_shape("VM.Any.Thing", calc_cpu=5, mem=16), None) == 32.0


def test_calculate_unknown_shape_is_max(catalog):
    assert calculate(_shape("VM.Unknown.Z9.1", calc_cpu=2), catalog) == MAX_FLOAT32


def test_calculate_gpu_shape_without_gpu_count_raises(catalog):
    with pytest.raises(ValueError):
        calculate(_shape("BM.GPU.A10.4"), catalog)


def test_find_price_items_special_type(catalog):
    names = [i.display_name for i in catalog.find_price_items("VM.Standard1.4")]
    assert names == ["Compute - Standard - X5 - OCPU"]


def test_find_price_items_falls_back_to_candidate_categories(catalog):
    names = [i.display_name for i in catalog.find_price_items("BM.Standard.E4.128")]
    assert names == ["Compute - Standard - E4 - OCPU", "Compute - Standard - E4 - Memory"]


def test_find_price_items_requires_word_boundary():
    doc = {"items": [_item(VM, "Compute - Standard - E45 - OCPU", "OCPU Per Hour", 1)]}
    assert PriceCatalog.from_json(json.dumps(doc)).find_price_items("VM.Standard.E4.Flex") == []


def test_find_price_items_gpu_not_found(catalog):
    assert catalog.find_price_items("BM.GPU.B4.8") == []


@pytest.mark.parametrize(
    "shape, category, service_type, cpu_type, scale",
    [
        ("VM.Standard1.4", "Compute - Virtual Machine", "Standard1", "", ""),
        ("BM.HPC2.36", "Compute - Bare Metal", "HPC", "", ""),
        ("VM.GPU3.4", "Compute - GPU", "GPU3", "", ""),
        ("BM.GPU.B4.8", "Compute - GPU", "GPU", "B4", "8"),
        ("VM.Standard.E2.1.Micro", "Compute - Virtual Machine", "Standard", "E2", "1"),
        ("VM.Standard.E4.Flex", "Compute - Virtual Machine", "Standard", "E4", "Flexible"),
        ("BM.DenseIO.E5.128", "Compute - Bare Metal", "Dense I/O", "E5", "128"),
        ("VM.DenseIO2.16", "Compute - Virtual Machine", "DenseIO2", "", ""),
        ("BM.Optimized3.36", "Compute - Bare Metal", "Optimized3", "", ""),
        ("VM.Standard2.24", "Compute - Virtual Machine", "Standard2", "", ""),
    ],
)
def test_parse_shape(shape, category, service_type, cpu_type, scale):
    parsed = parse_shape(shape)
    assert (parsed.service_category, parsed.service_type) == (category, service_type)
    assert (parsed.cpu_gpu_type, parsed.cpu_gpu_scale) == (cpu_type, scale)


def test_parse_shape_candidate_categories():
    assert parse_shape("BM.Standard3.64").candidate_service_category == [
        "Compute - Virtual Machine",
        "Compute - VMware",
    ]
    assert parse_shape("VM.Standard3.Flex").candidate_service_category == ["Compute - VMware"]
    assert parse_shape("VM.GPU3.1").candidate_service_category == []


def test_parse_shape_without_dot_raises():
    with pytest.raises(ValueError):
        parse_shape("Standard")


def test_item_predicates():
    item = Item(display_name="Compute - Standard - B1 - Hourly Commit - NVMe Free")
    assert item.is_hourly_commit() and item.is_free() and item.is_nvme() and item.is_nvme_type()
    assert not item.is_month_commit()
    assert not item.is_gpu()


def test_node_price_divided_by_cores():
    item = Item.from_dict(_item(VM, "X - BM.GPU.A10.4 - Node", "Node Per Hour", 8))
    assert item.price_per_unit() == 2.0


def test_get_price_missing_currency_is_zero(catalog):
    assert catalog.items[0].get_price(CurrencyCode.EUR) == 0.0
    assert float_equal(catalog.items[0].get_price(CurrencyCode.USD), 0.025, 1e-7)


def test_cpu_num():
    assert Item(display_name="Compute - VM.Standard.B1.16 - Hourly Commit").cpu_num() == 16
    assert Item(display_name="Compute - Standard - OCPU").cpu_num() == 1
    assert Item(display_name="Compute - VM.Standard.B1.x - 1 Year Commit").cpu_num() == 1


def test_from_json_case_insensitive_keys():
    doc = {"Items": [{"DisplayName": "a", "metricname": "b"}]}
    items = PriceCatalog.from_json(json.dumps(doc)).items
    assert (items[0].display_name, items[0].metric_name) == ("a", "b")


def test_from_json_rejects_bad_types():
    with pytest.raises(ValueError):
        PriceCatalog.from_json('{"items": [{"displayName": 3}]}')


def test_contains_helpers():
    assert contain_ocpu("E4 OCPU") and contain_memory("Memory x") and contain_nvme("NVMe")
    assert not contain_ocpu("memory")


def test_local_syncer_loads_catalog():
    syncer = PriceListSyncer("http://localhost/", 120, True, CATALOG_JSON)
    syncer.start()
    assert len(syncer.price_catalog.items) == len(CATALOG_DOC["items"])


def test_local_syncer_without_document_raises():
    with pytest.raises(ValueError):
        PriceListSyncer("http://localhost/", 120, True).start()


@pytest.fixture
def server():
    state = {"status": 200, "body": CATALOG_JSON.encode(), "hits": 0}

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            state["hits"] += 1
            self.send_response(state["status"])
            self.send_header("Content-Length", str(len(state["body"])))
            self.end_headers()
            self.wfile.write(state["body"])

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}/", state
    httpd.shutdown()
    httpd.server_close()


def test_fetch_installs_catalog(server):
    url, _ = server
    syncer = PriceListSyncer(url, 120)
    syncer.fetch()
    assert syncer.price_catalog.items[0].display_name == "Compute - Standard - E4 - OCPU"


def test_fetch_error_status_keeps_catalog(server):
    url, state = server
    syncer = PriceListSyncer(url, 120)
    syncer.fetch()
    state["status"] = 500
    state["body"] = b"{}"
    syncer.fetch()
    assert len(syncer.price_catalog.items) == len(CATALOG_DOC["items"])


def test_fetch_bad_json_raises(server):
    url, state = server
    state["body"] = b"not json"
    with pytest.raises(ValueError, match="failed to decode"):
        PriceListSyncer(url, 120).fetch()


def test_start_refreshes_in_background(server):
    url, state = server
    syncer = PriceListSyncer(url, 60)
    syncer.start()
    deadline = time.monotonic() + 5
    while state["hits"] < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    syncer.stop()
    assert state["hits"] == 2
    assert len(syncer.price_catalog.items) == len(CATALOG_DOC["items"])