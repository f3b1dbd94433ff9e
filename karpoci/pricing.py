"""Price catalog lookup and hourly price estimation for compute shapes."""

from __future__ import annotations

import json
import logging
import math
import re
import struct
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

from karpoci.models import WrapShape

logger = logging.getLogger(__name__)

OCPU_PER_HOUR = "OCPU Per Hour"
GPU_PER_HOUR = "GPU Per Hour"
GIGABYTE_PER_HOUR = "Gigabyte Per Hour"
NODE_PER_HOUR = "Node Per Hour"
NVME_TERABYTE_PER_HOUR = "NVMe Terabyte Per Hour"

MAX_FLOAT32 = 3.4028234663852886e38

SPECIAL_TYPES = {
    "GPU2": "GPU Standard - X7",
    "GPU3": "GPU Standard - X7",
    "Standard1": "Standard - X5",
    "Optimized3": "Standard - HPC - X7",
    "HPC": "Standard - HPC - X7",
}

_CATEGORY_GPU = "Compute - GPU"
_CATEGORY_BARE_METAL = "Compute - Bare Metal"
_CATEGORY_VM = "Compute - Virtual Machine"
_CATEGORY_VMWARE = "Compute - VMware"

_INTEGER = re.compile(r"[+-]?\d+")
_GPU_NUMBERED = re.compile(r"GPU(\d+)")
_DENSEIO_NUMBERED = re.compile(r"DenseIO(\d+)")
_STANDARD_PREFIX = re.compile(r"^Standard(\d*)")
_HPC_PREFIX = re.compile(r"^HPC(\d*)")


class CurrencyCode(str, Enum):
    """ISO 4217 currency codes used in price localizations."""

    AFN = "AFN"
    ALL = "ALL"
    DZD = "DZD"
    USD = "USD"
    EUR = "EUR"
    AOA = "AOA"
    XCD = "XCD"
    ARS = "ARS"
    AMD = "AMD"
    AWG = "AWG"
    AUD = "AUD"
    AZN = "AZN"
    BSD = "BSD"
    BHD = "BHD"
    BDT = "BDT"
    BBD = "BBD"
    BYN = "BYN"
    BZD = "BZD"
    XOF = "XOF"
    BMD = "BMD"
    BTN = "BTN"
    INR = "INR"
    BOB = "BOB"
    BOV = "BOV"
    BAM = "BAM"
    BWP = "BWP"
    NOK = "NOK"
    BRL = "BRL"
    KYD = "KYD"
    CRC = "CRC"
    COP = "COP"
    KMF = "KMF"
    CDF = "CDF"
    XAF = "XAF"
    NZD = "NZD"
    DKK = "DKK"
    DJF = "DJF"
    DOP = "DOP"
    EGP = "EGP"
    SVC = "SVC"
    ERN = "ERN"
    ETB = "ETB"
    FKP = "FKP"
    FJD = "FJD"
    HNL = "HNL"
    HKD = "HKD"
    HUF = "HUF"
    ISK = "ISK"
    IDR = "IDR"
    IRR = "IRR"
    IQD = "IQD"
    ILS = "ILS"
    JMD = "JMD"
    JPY = "JPY"
    JOD = "JOD"
    KZT = "KZT"
    KES = "KES"
    KPW = "KPW"
    KRW = "KRW"
    KWD = "KWD"
    KGS = "KGS"
    LAK = "LAK"
    LBP = "LBP"
    LSL = "LSL"
    ZAR = "ZAR"
    LRD = "LRD"
    LYD = "LYD"
    CHF = "CHF"
    MGA = "MGA"
    MWK = "MWK"
    MYR = "MYR"
    MVR = "MVR"
    MZN = "MZN"
    MXN = "MXN"
    PEN = "PEN"
    PHP = "PHP"
    PLN = "PLN"
    PAB = "PAB"
    QAR = "QAR"
    RON = "RON"
    RUB = "RUB"
    RWF = "RWF"
    SCR = "SCR"
    SGD = "SGD"
    SLE = "SLE"
    SEK = "SEK"
    TJS = "TJS"
    TND = "TND"
    TRY = "TRY"
    UYU = "UYU"
    UZS = "UZS"
    VUV = "VUV"
    VND = "VND"
    XAU = "XAU"
    XAG = "XAG"
    ZMW = "ZMW"
    ZWL = "ZWL"


def _f32(value: float) -> float:
    """Round a number to single precision."""
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _atoi(text: str) -> Optional[int]:
    return int(text) if _INTEGER.fullmatch(text) else None


def _field(data: Mapping[str, Any], name: str) -> Any:
    if name in data:
        return data[name]
    lowered = name.lower()
    for key, value in data.items():
        if key.lower() == lowered:
            return value
    return None


def _as_str(value: Any, name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {name} must be a string, got {value!r}")
    return value


def _as_number(value: Any, name: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {name} must be a number, got {value!r}")
    return _f32(float(value))


def _as_objects(value: Any, name: str) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {name} must be a list, got {value!r}")
    result = []
    for element in value:
        if element is None:
            element = {}
        if not isinstance(element, dict):
            raise ValueError(f"field {name} must hold objects, got {element!r}")
        result.append(element)
    return result


@dataclass
class Price:
    """One price point of an item."""

    model: str = ""
    value: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Price":
        return cls(
            model=_as_str(_field(data, "model"), "model"),
            value=_as_number(_field(data, "value"), "value"),
        )


@dataclass
class CurrencyCodeLocalization:
    """Prices of an item in one currency."""

    currency_code: str = ""
    prices: list[Price] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CurrencyCodeLocalization":
        return cls(
            currency_code=_as_str(_field(data, "currencyCode"), "currencyCode"),
            prices=[Price.from_dict(p) for p in _as_objects(_field(data, "prices"), "prices")],
        )


@dataclass
class Item:
    """A priced product from the catalog."""

    part_number: str = ""
    display_name: str = ""
    metric_name: str = ""
    service_category: str = ""
    currency_code_localizations: list[CurrencyCodeLocalization] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Item":
        localizations = _as_objects(
            _field(data, "currencyCodeLocalizations"), "currencyCodeLocalizations"
        )
        return cls(
            part_number=_as_str(_field(data, "partNumber"), "partNumber"),
            display_name=_as_str(_field(data, "displayName"), "displayName"),
            metric_name=_as_str(_field(data, "metricName"), "metricName"),
            service_category=_as_str(_field(data, "serviceCategory"), "serviceCategory"),
            currency_code_localizations=[
                CurrencyCodeLocalization.from_dict(entry) for entry in localizations
            ],
        )

    def is_free(self) -> bool:
        return "Free" in self.display_name

    def is_gpu(self) -> bool:
        return "GPU" in self.display_name

    def is_nvme(self) -> bool:
        return "NVMe" in self.display_name

    def is_ocpu_type(self) -> bool:
        return "OCPU" in self.display_name

    def is_memory_type(self) -> bool:
        return "Memory" in self.display_name

    def is_nvme_type(self) -> bool:
        return "NVMe" in self.display_name

    def is_hourly_commit(self) -> bool:
        return "Hourly Commit" in self.display_name

    def is_month_commit(self) -> bool:
        return "1 Month Commit" in self.display_name

    def is_year_commit(self) -> bool:
        return "1 Year Commit" in self.display_name

    def is_3_year_commit(self) -> bool:
        return "3 Year Commit" in self.display_name

    def price_per_unit(self) -> float:
        """USD price per billed unit; node prices are divided by the node's core count."""
        price = self.get_price(CurrencyCode.USD)
        if self.metric_name != NODE_PER_HOUR:
            return price
        cores = _core_num_from_display_name(self.display_name)
        if cores == 0:
            return math.nan if price == 0 else math.copysign(math.inf, price)
        return _f32(price / cores)

    def get_price(self, code: Union[CurrencyCode, str]) -> float:
        """First price in the given currency, or 0 if there is none."""
        for local in self.currency_code_localizations:
            if local.currency_code == code:
                if not local.prices:
                    raise ValueError(f"no prices for {code} in {self.display_name!r}")
                return local.prices[0].value
        return 0.0

    def cpu_num(self) -> int:
        """Core count named in a commitment item's display name, else 1."""
        if not (self.is_hourly_commit() or self.is_month_commit() or self.is_year_commit()):
            return 1
        parts = self.display_name.split("-")
        if len(parts) < 2:
            raise ValueError(f"display name {self.display_name!r} names no shape")
        shape_parts = parts[-2].split(".")
        if len(shape_parts) <= 1:
            return 1
        number = _atoi(shape_parts[-1].strip())
        return 1 if number is None else number


def _core_num_from_display_name(display_name: str) -> int:
    parts = display_name.split(" - ")
    if len(parts) < 2:
        return 1
    number = _atoi(parts[-2].split(".")[-1])
    return 1 if number is None else number


@dataclass
class ParsedShape:
    """The parts of a shape name that identify its catalog entries."""

    service_category: str = ""
    candidate_service_category: list[str] = field(default_factory=list)
    service_type: str = ""
    cpu_gpu_type: str = ""
    cpu_gpu_scale: str = ""


def parse_shape(shape: str) -> ParsedShape:
    """Split a shape name such as "VM.Standard.E4.Flex" into catalog search terms."""
    items = shape.split(".")
    if len(items) < 2:
        raise ValueError(f"shape {shape!r} has no type part")
    parsed = ParsedShape()
    kind = items[1]

    if "GPU" in kind:
        parsed.service_category = _CATEGORY_GPU
    elif items[0] == "BM":
        parsed.service_category = _CATEGORY_BARE_METAL
        parsed.candidate_service_category = [_CATEGORY_VM, _CATEGORY_VMWARE]
    else:
        parsed.service_category = _CATEGORY_VM
        parsed.candidate_service_category = [_CATEGORY_VMWARE]

    if parsed.service_category == _CATEGORY_GPU:
        parsed.service_type = kind if _GPU_NUMBERED.search(kind) else "GPU"
    elif "DenseIO" in kind:
        parsed.service_type = kind if _DENSEIO_NUMBERED.search(kind) else "Dense I/O"
    else:
        standard = _STANDARD_PREFIX.search(kind)
        if standard:
            parsed.service_type = standard.group(0)
        elif _HPC_PREFIX.search(kind):
            parsed.service_type = "HPC"
        else:
            parsed.service_type = kind

    if len(items) > 3:
        parsed.cpu_gpu_type = items[2]
        if _atoi(items[3]) is not None:
            parsed.cpu_gpu_scale = items[3]
        elif items[3] == "Flex":
            parsed.cpu_gpu_scale = "Flexible"
    return parsed


def _matches_word(key: str, text: str) -> bool:
    try:
        return re.search(r"\b" + key + r"\b", text, re.ASCII) is not None
    except re.error:
        return False


@dataclass
class PriceCatalog:
    """All priced items known to the pricing service."""

    items: list[Item] = field(default_factory=list)

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "PriceCatalog":
        """Decode a catalog document of the form {"items": [...]}."""
        document = json.loads(text)
        if document is None:
            return cls()
        if not isinstance(document, dict):
            raise ValueError("price catalog must be a JSON object")
        items = _as_objects(_field(document, "items"), "items")
        return cls(items=[Item.from_dict(item) for item in items])

    def _in_categories(self, categories: list[str]) -> list[Item]:
        return [
            item
            for item in self.items
            for category in categories
            if item.service_category == category
        ]

    def find_price_items(self, shape: str) -> list[Item]:
        """Items that price the given shape, falling back to related categories."""
        parsed = parse_shape(shape)
        service_type = SPECIAL_TYPES.get(parsed.service_type, parsed.service_type)
        search_key = service_type
        if parsed.cpu_gpu_type:
            search_key = f"{search_key} - {parsed.cpu_gpu_type}"

        matching = [
            item
            for item in self._in_categories([parsed.service_category])
            if search_key in item.display_name and _matches_word(search_key, item.display_name)
        ]
        if not matching:
            matching = [
                item
                for item in self._in_categories(parsed.candidate_service_category)
                if search_key in item.display_name
            ]
        return matching


def _required(value: Optional[float], what: str, shape: WrapShape) -> float:
    if value is None:
        raise ValueError(f"shape {shape.name} has no {what}")
    return value


def calculate(shape: WrapShape, catalog: Optional[PriceCatalog]) -> float:
    """Estimated hourly price of a sized shape; MAX_FLOAT32 when it cannot be priced."""
    ocpus = shape.calc_cpu // 2
    if catalog is None:
        return _f32(float(8 * ocpus + shape.cal_mem_in_gbs))

    items = catalog.find_price_items(shape.name)
    if not items:
        return MAX_FLOAT32

    if len(items) == 1:
        item = items[0]
        if item.is_free():
            return 0.0
        unit = item.price_per_unit()
        metric = item.metric_name
        if metric == GPU_PER_HOUR:
            return _f32(_required(shape.gpus, "GPU count", shape) * unit)
        if metric == OCPU_PER_HOUR:
            return _f32(ocpus * unit)
        if metric == GIGABYTE_PER_HOUR:
            return _f32(shape.cal_mem_in_gbs * unit)
        if metric == NODE_PER_HOUR:
            if item.is_gpu():
                return _f32(_required(shape.gpus, "GPU count", shape) * unit)
            return _f32(ocpus * unit)
        if metric == NVME_TERABYTE_PER_HOUR:
            disks = _f32(_required(shape.local_disks_total_size_in_gbs, "local disks", shape))
            return _f32(disks * unit)
        return 0.0

    price = 0.0
    for item in items:
        if item.is_ocpu_type():
            amount = ocpus * item.price_per_unit()
        elif item.is_memory_type():
            amount = shape.cal_mem_in_gbs * item.price_per_unit()
        elif item.is_nvme_type():
            disks = _f32(_required(shape.local_disks_total_size_in_gbs, "local disks", shape))
            amount = _f32(disks / 1024) * item.price_per_unit()
        elif item.is_month_commit() or item.is_year_commit() or item.is_3_year_commit():
            continue
        elif item.is_hourly_commit():
            price = _f32(price + _f32(ocpus * item.price_per_unit()))
            break
        else:
            amount = ocpus * item.price_per_unit()
        price = _f32(price + _f32(amount))
    return price


def contain_ocpu(shape: str) -> bool:
    return "OCPU" in shape


def contain_memory(shape: str) -> bool:
    return "Memory" in shape


def contain_nvme(shape: str) -> bool:
    return "NVMe" in shape


def float_equal(a: float, b: float, epsilon: float) -> bool:
    return abs(a - b) < epsilon


class PriceListSyncer:
    """Keeps a price catalog current, either from a local document or a remote endpoint."""

    def __init__(
        self,
        endpoint: str,
        sync_period: float,
        use_local_price_list: bool = False,
        local_price_list: Optional[Union[str, bytes]] = None,
        timeout: float = 30.0,
    ) -> None:
        self.endpoint = endpoint
        self.sync_period = sync_period
        self.use_local_price_list = use_local_price_list
        self.local_price_list = local_price_list
        self.timeout = timeout
        self.price_catalog = PriceCatalog()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Load the catalog once, then keep refreshing it in the background if remote."""
        if self.use_local_price_list:
            if self.local_price_list is None:
                raise ValueError("no local price list configured")
            self.price_catalog = PriceCatalog.from_json(self.local_price_list)
            return
        self.fetch()
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name="price-list-sync", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                self.fetch()
            except (OSError, ValueError) as err:
                logger.warning("failed to sync price list: %s", err)
            if self._stopped.wait(self.sync_period):
                break

    def fetch(self) -> None:
        """Download and install the catalog; a refused or unreadable response keeps the old one."""
        logger.info("sync price list")
        try:
            response = urllib.request.urlopen(self.endpoint, timeout=self.timeout)
        except urllib.error.HTTPError as err:
            logger.warning("failed to pull price list, status %s", err.code)
            err.close()
            return
        with response:
            if response.status > 299:
                logger.warning("failed to pull price list, status %s", response.status)
                return
            try:
                body = response.read()
            except OSError as err:
                logger.warning("failed to read price list api: %s", err)
                return
        try:
            catalog = PriceCatalog.from_json(body)
        except ValueError as err:
            raise ValueError(f"failed to decode oci price list, {err}") from err
        self.price_catalog = catalog

    def stop(self) -> None:
        """Stop background refreshing and wait for it to finish."""
        self._stopped.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None