"""
Security Analysis - reputação de IP (IP2Location.io) + consistência de localização.

Enriquecimento best-effort de uma submissão KYC:
- nunca levanta excepções para o caller
- sem API key / erro HTTP / timeout / resposta inválida -> relatório de fallback
  (confidence="low")
- IPs privados / loopback nem chegam a ser enviados ao fornecedor
"""
from __future__ import annotations

import ipaddress
import logging
from typing import Any, Dict, Literal, Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..settings import settings

logger = logging.getLogger(__name__)

HIGH_RISK_THRESHOLD = 75
MEDIUM_RISK_THRESHOLD = 50

_PROXY_FLAGS = ("is_vpn", "is_tor", "is_data_center", "is_public_proxy", "is_web_proxy")


# ---------------- MODELOS ----------------
class GeoLocation(BaseModel):
    city: Optional[str] = None
    country: Optional[str] = None


class SubmissionRiskInput(BaseModel):
    ip_address: str = ""
    country: Optional[str] = None
    geolocation: Optional[GeoLocation] = None


class RealLocation(BaseModel):
    country: Optional[str] = None
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    zip_code: Optional[str] = None
    timezone: Optional[str] = None
    isp: Optional[str] = None
    organization: Optional[str] = None
    domain: Optional[str] = None
    usage_type: Optional[str] = None
    address_type: Optional[str] = None
    net_speed: Optional[str] = None
    elevation: Optional[float] = None
    continent: Optional[str] = None
    currency: Optional[str] = None
    language: Optional[str] = None


class ProxyInfo(BaseModel):
    proxy_type: Optional[str] = None
    provider: Optional[str] = None
    is_vpn: bool = False
    is_tor: bool = False
    is_data_center: bool = False
    is_public_proxy: bool = False
    is_web_proxy: bool = False
    is_residential_proxy: bool = False
    is_spammer: bool = False
    is_scanner: bool = False
    is_botnet: bool = False
    threat: Optional[str] = None
    last_seen: Optional[int] = None


class RiskReport(BaseModel):
    vpn_detected: bool = False
    location_mismatch: bool = False
    real_location: Optional[RealLocation] = None
    proxy_info: Optional[ProxyInfo] = None
    fraud_score: int = 0
    fraud_risk: Literal["low", "medium", "high"] = "low"
    confidence: Literal["low", "high"] = "low"


# ---------------- HEURÍSTICAS ----------------
def fraud_risk_for(score: int) -> str:
    if score > HIGH_RISK_THRESHOLD:
        return "high"
    if score > MEDIUM_RISK_THRESHOLD:
        return "medium"
    return "low"


def _strip_mapped(ip: str) -> str:
    ip = (ip or "").strip()
    if ip.lower().startswith("::ffff:") and "." in ip:
        return ip[7:]
    return ip


def is_non_routable(ip: str) -> bool:
    """True para IP vazio, inválido, loopback ou privado (não geolocalizável)."""
    ip = _strip_mapped(ip)
    if not ip:
        return True
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified


def has_private_prefix(ip: str) -> bool:
    """Heurística textual grosseira (fallback): 10.*, 172.16-31.*, 192.168.*"""
    ip = _strip_mapped(ip)
    if ip.startswith("10.") or ip.startswith("192.168."):
        return True
    if ip.startswith("172."):
        second = ip.split(".")[1] if ip.count(".") >= 1 else ""
        return second.isdigit() and 16 <= int(second) <= 31
    return False


def _countries_differ(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() != b.strip().lower()


def _safe_score(v: Any) -> int:
    try:
        score = int(float(v or 0))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


def fallback_report(data: SubmissionRiskInput) -> RiskReport:
    geo_country = data.geolocation.country if data.geolocation else None
    return RiskReport(
        vpn_detected=has_private_prefix(data.ip_address),
        location_mismatch=_countries_differ(geo_country, data.country),
        real_location=None,
        proxy_info=None,
        fraud_score=0,
        fraud_risk="low",
        confidence="low",
    )


def report_from_provider(data: SubmissionRiskInput, ip_data: Dict[str, Any]) -> RiskReport:
    """Converte a resposta do IP2Location.io num RiskReport (ValidationError se malformada)."""
    proxy = ip_data.get("proxy")
    if not isinstance(proxy, dict):
        proxy = None

    vpn_detected = ip_data.get("is_proxy") is True or bool(
        proxy and any(proxy.get(k) is True for k in _PROXY_FLAGS)
    )

    tz_info = ip_data.get("time_zone_info")
    continent = ip_data.get("continent")
    country = ip_data.get("country")

    real_location = RealLocation.model_validate(
        {
            "country": ip_data.get("country_name"),
            "country_code": ip_data.get("country_code"),
            "region": ip_data.get("region_name"),
            "city": ip_data.get("city_name"),
            "latitude": ip_data.get("latitude"),
            "longitude": ip_data.get("longitude"),
            "zip_code": ip_data.get("zip_code"),
            "timezone": (tz_info.get("olson") if isinstance(tz_info, dict) else None) or ip_data.get("time_zone"),
            "isp": ip_data.get("isp"),
            "organization": ip_data.get("as"),
            "domain": ip_data.get("domain"),
            "usage_type": ip_data.get("usage_type"),
            "address_type": ip_data.get("address_type"),
            "net_speed": ip_data.get("net_speed"),
            "elevation": ip_data.get("elevation"),
            "continent": continent.get("name") if isinstance(continent, dict) else None,
            "currency": ((country or {}).get("currency") or {}).get("code") if isinstance(country, dict) else None,
            "language": ((country or {}).get("language") or {}).get("name") if isinstance(country, dict) else None,
        }
    )

    proxy_info = None
    if proxy:
        proxy_info = ProxyInfo.model_validate(
            {
                "proxy_type": proxy.get("proxy_type"),
                "provider": proxy.get("provider"),
                "is_vpn": proxy.get("is_vpn") is True,
                "is_tor": proxy.get("is_tor") is True,
                "is_data_center": proxy.get("is_data_center") is True,
                "is_public_proxy": proxy.get("is_public_proxy") is True,
                "is_web_proxy": proxy.get("is_web_proxy") is True,
                "is_residential_proxy": proxy.get("is_residential_proxy") is True,
                "is_spammer": proxy.get("is_spammer") is True,
                "is_scanner": proxy.get("is_scanner") is True,
                "is_botnet": proxy.get("is_botnet") is True,
                "threat": proxy.get("threat"),
                "last_seen": proxy.get("last_seen"),
            }
        )

    score = _safe_score(ip_data.get("fraud_score"))

    return RiskReport(
        vpn_detected=vpn_detected,
        location_mismatch=_countries_differ(data.country, ip_data.get("country_name")),
        real_location=real_location,
        proxy_info=proxy_info,
        fraud_score=score,
        fraud_risk=fraud_risk_for(score),
        confidence="high",
    )


# ---------------- SERVIÇO ----------------
class SecurityAnalyzer:
    """
    Análise de segurança de uma submissão.

    `transport` permite injectar um httpx.MockTransport nos testes.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.IP2LOCATION_API_KEY if api_key is None else api_key
        self.base_url = base_url or settings.IP2LOCATION_URL
        self.timeout = timeout if timeout is not None else settings.IP2LOCATION_TIMEOUT_SEC
        self._transport = transport

    async def _lookup(self, ip: str) -> Optional[Dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.base_url, params={"key": self.api_key, "ip": ip})

        if response.status_code != 200:
            logger.error(f"IP2Location API error for {ip}: HTTP {response.status_code}")
            return None

        payload = response.json()
        if not isinstance(payload, dict):
            logger.error(f"IP2Location API returned unexpected payload for {ip}")
            return None
        if "error" in payload:
            logger.error(f"IP2Location API error for {ip}: {payload.get('error')}")
            return None
        return payload

    async def analyze(self, data: SubmissionRiskInput) -> RiskReport:
        ip = _strip_mapped(data.ip_address)

        if is_non_routable(ip):
            logger.info(f"Skipping IP2Location lookup for local/private IP: {ip or '<empty>'}")
            return fallback_report(data)

        if not self.api_key:
            logger.warning("IP2Location API key not configured, using fallback detection")
            return fallback_report(data)

        try:
            ip_data = await self._lookup(ip)
            if ip_data is None:
                return fallback_report(data)
            report = report_from_provider(data, ip_data)
        except httpx.TimeoutException:
            logger.error(f"IP2Location timeout for {ip}")
            return fallback_report(data)
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error(f"IP2Location lookup failed for {ip}: {e}")
            return fallback_report(data)
        except Exception as e:
            logger.exception(f"Unexpected error in security analysis for {ip}: {e}")
            return fallback_report(data)

        logger.info(
            f"IP2Location analysis ip={ip} vpn={report.vpn_detected} "
            f"fraud_score={report.fraud_score} risk={report.fraud_risk} "
            f"mismatch={report.location_mismatch}"
        )
        return report


security_analyzer = SecurityAnalyzer()
