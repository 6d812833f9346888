"""
Intranet host mapping.

Deployments inside the media platform's network can reach the media host on
private addresses. A JSON mappings file maps a media domain to one address or
to a pool of them:

    {
      "cvideo.yanhekt.cn": {"type": "single", "ip": "10.0.0.5"},
      "cvideo2.yanhekt.cn": {
        "type": "loadbalance",
        "ips": ["10.0.0.6", "10.0.0.7"],
        "strategy": "round_robin"
      }
    }

Requests made on the ``/intranet/...`` routes go to the mapped address with
the original domain in the ``Host`` header. A pool address that fails at the
transport level is skipped for ``FAILED_IP_TTL`` seconds; when every address
in a pool has failed, the failures are forgotten and the whole pool is used
again.
"""

import json
import random
import threading
import time

import requests
import structlog
import urllib3
from urllib3.util import parse_url

log = structlog.get_logger(__name__)

SINGLE = "single"
LOADBALANCE = "loadbalance"

ROUND_ROBIN = "round_robin"
RANDOM = "random"
FIRST_AVAILABLE = "first_available"
STRATEGIES = (ROUND_ROBIN, RANDOM, FIRST_AVAILABLE)

FAILED_IP_TTL = 300  # seconds


class MappingError(ValueError):
    pass


def _parse_mappings(data):
    if not isinstance(data, dict):
        raise MappingError("mappings file must hold a JSON object")

    mappings = {}
    for domain, entry in data.items():
        if not isinstance(entry, dict):
            raise MappingError(f"{domain}: mapping must be an object")
        kind = entry.get("type", SINGLE)
        if kind == SINGLE:
            if not isinstance(entry.get("ip"), str) or not entry["ip"]:
                raise MappingError(f"{domain}: single mapping needs an ip")
        elif kind == LOADBALANCE:
            ips = entry.get("ips")
            if not isinstance(ips, list) or not all(isinstance(ip, str) and ip for ip in ips):
                raise MappingError(f"{domain}: loadbalance mapping needs a list of ips")
            strategy = entry.get("strategy") or ROUND_ROBIN
            if strategy not in STRATEGIES:
                raise MappingError(f"{domain}: unknown strategy {strategy!r}")
        else:
            raise MappingError(f"{domain}: unknown mapping type {kind!r}")

        mappings[domain.lower()] = {
            "type": kind,
            "ip": entry.get("ip", ""),
            "ips": list(entry.get("ips") or []),
            "strategy": entry.get("strategy") or (ROUND_ROBIN if kind == LOADBALANCE else ""),
        }
    return mappings


class IntranetMapper:
    """Domain to intranet address mapping, reloadable from its JSON file."""

    def __init__(self, config_file, clock=time.monotonic, rng=None):
        self.config_file = config_file
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._mappings = {}
        self._next_index = {}
        self._failed = {}  # (domain, ip) -> failed at
        self.reload()

    def reload(self):
        """Re-read the mappings file. The current mappings survive a failed reload."""
        try:
            with open(self.config_file, encoding="utf-8") as fh:
                data = json.load(fh)
        except OSError as exc:
            raise MappingError(f"cannot read {self.config_file}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise MappingError(f"invalid JSON in {self.config_file}: {exc}") from exc

        mappings = _parse_mappings(data)
        with self._lock:
            self._mappings = mappings
            self._next_index = {domain: 0 for domain in mappings}
        log.info("intranet_mappings_loaded", count=len(mappings), file=self.config_file)

    def mappings(self):
        with self._lock:
            return {domain: dict(entry) for domain, entry in self._mappings.items()}

    def pick_ip(self, domain):
        """Address to use for ``domain``, or None when it is not mapped."""
        domain = domain.lower()
        with self._lock:
            entry = self._mappings.get(domain)
            if entry is None:
                return None
            if entry["type"] == SINGLE:
                return entry["ip"]
            return self._pick_from_pool(domain, entry)

    def _pick_from_pool(self, domain, entry):
        ips = entry["ips"]
        if not ips:
            return None

        available = self._available(domain, ips)
        if not available:
            self._forget_failures(domain)
            available = ips

        strategy = entry["strategy"]
        if strategy == RANDOM:
            return self._rng.choice(available)
        if strategy == FIRST_AVAILABLE:
            return available[0]
        idx = self._next_index.get(domain, 0) % len(available)
        self._next_index[domain] = (idx + 1) % len(available)
        return available[idx]

    def _available(self, domain, ips):
        now = self._clock()
        available = []
        for ip in ips:
            failed_at = self._failed.get((domain, ip))
            if failed_at is not None and now - failed_at <= FAILED_IP_TTL:
                continue
            self._failed.pop((domain, ip), None)
            available.append(ip)
        return available

    def _forget_failures(self, domain):
        for key in [k for k in self._failed if k[0] == domain]:
            del self._failed[key]
        log.info("intranet_failures_cleared", domain=domain)

    def mark_failed(self, domain, ip):
        with self._lock:
            self._failed[(domain.lower(), ip)] = self._clock()
        log.warning("intranet_ip_failed", domain=domain, ip=ip)

    def rewrite_url(self, url):
        """
        Swap the host of ``url`` for its mapped address.

        Returns ``(url, original_host, ip)``. ``ip`` is None and the URL is
        unchanged when the host has no mapping.
        """
        parts = parse_url(url)
        if not parts.host:
            return url, None, None
        ip = self.pick_ip(parts.host)
        if ip is None:
            return url, None, None

        original_host = parts.host if parts.port is None else f"{parts.host}:{parts.port}"
        # The port, if any, stays as it was
        return parts._replace(host=ip).url, original_host, ip


class IntranetTransport:
    """
    ``requests``-style client that sends media requests to mapped addresses.

    Mapped addresses are private IPs whose certificates name the public
    domain, so TLS verification is off on this transport only.
    """

    def __init__(self, mapper, http=requests):
        self.mapper = mapper
        self.http = http
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def get(self, url, headers=None, timeout=None, stream=False):
        request_url, original_host, ip = self.mapper.rewrite_url(url)
        if ip is None:
            return self.http.get(url, headers=headers, timeout=timeout, stream=stream)

        headers = dict(headers or {})
        headers["Host"] = original_host
        try:
            return self.http.get(
                request_url,
                headers=headers,
                timeout=timeout,
                stream=stream,
                verify=False,
            )
        except requests.RequestException:
            self.mapper.mark_failed(parse_url(url).host, ip)
            raise
