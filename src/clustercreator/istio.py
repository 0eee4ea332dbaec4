"""Validation of the ingress-only Istio deployment."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from clustercreator.kubectl import Kubectl

logger = logging.getLogger(__name__)

PASS, WARN, FAIL = "pass", "warn", "fail"

DEFAULT_POD_CHECKS = [
    ("istio-system", "app=istiod", "Istio Control Plane (istiod)"),
    ("istio-system", "app=istio-ingressgateway", "Istio Ingress Gateway"),
    ("istio-system", "app=ztunnel", "Istio Ztunnel (L4 proxy)"),
    ("kube-system", "k8s-app=cilium", "Cilium CNI"),
]

DEFAULT_VIRTUAL_SERVICES = [
    ("grafana", "monitoring"),
    ("prometheus", "monitoring"),
    ("n8n", "n8n"),
    ("wh-n8n", "n8n"),
    ("hubble-ui", "kube-system"),
]


@dataclass
class IstioCheck:
    name: str
    status: str
    detail: str = ""


@dataclass
class IstioReport:
    checks: List[IstioCheck] = field(default_factory=list)

    def add(self, name: str, status: str, detail: str = "") -> IstioCheck:
        check = IstioCheck(name, status, detail)
        log = {PASS: logger.info, WARN: logger.warning, FAIL: logger.error}[status]
        marker = {PASS: "✅", WARN: "⚠️ ", FAIL: "❌"}[status]
        log(f"{marker} {name}" + (f": {detail}" if detail else ""))
        self.checks.append(check)
        return check

    @property
    def failed(self) -> List[IstioCheck]:
        return [c for c in self.checks if c.status == FAIL]

    @property
    def ok(self) -> bool:
        return not self.failed


class IstioValidator:
    """Runs every Istio check and collects the results; nothing short-circuits."""

    def __init__(
        self,
        kubectl: Optional[Kubectl] = None,
        namespace: str = "istio-system",
        certificate: str = "dunde-live-istio-tls",
        gateways: Tuple[str, ...] = ("dunde-live-gateway", "dunde-live-gateway-api"),
        ingress_service: str = "istio-ingressgateway",
        expected_lb_ip: str = "10.11.12.200",
        pod_checks: Optional[List[Tuple[str, str, str]]] = None,
        virtual_services: Optional[List[Tuple[str, str]]] = None,
    ) -> None:
        self.kubectl = kubectl or Kubectl()
        self.namespace = namespace
        self.certificate = certificate
        self.gateways = gateways
        self.ingress_service = ingress_service
        self.expected_lb_ip = expected_lb_ip
        self.pod_checks = pod_checks or DEFAULT_POD_CHECKS
        self.virtual_services = virtual_services or DEFAULT_VIRTUAL_SERVICES

    def check_pods(self, report: IstioReport) -> None:
        for namespace, selector, description in self.pod_checks:
            counts = self.kubectl.count_pods(namespace, selector)
            ok = counts.ready > 0 and counts.ready == counts.total
            report.add(description, PASS if ok else FAIL, f"{counts.ready}/{counts.total}")

    def check_certificate(self, report: IstioReport) -> None:
        name = f"Certificate {self.certificate}"
        if not self.kubectl.resource_exists("certificate", self.certificate, self.namespace):
            report.add(name, FAIL, "Not Found")
            return
        status = self.kubectl.jsonpath(
            ["certificate", self.certificate, "-n", self.namespace],
            '{.status.conditions[?(@.type=="Ready")].status}',
        ) or "Unknown"
        if status == "True":
            report.add(name, PASS, "Ready")
        else:
            report.add(name, WARN, f"Not Ready ({status})")

    def check_gateways(self, report: IstioReport) -> None:
        for gateway in self.gateways:
            found = self.kubectl.resource_exists("gateway", gateway, self.namespace)
            report.add(f"Gateway {gateway}", PASS if found else FAIL, "Configured" if found else "Not Found")

    def check_load_balancer(self, report: IstioReport) -> None:
        ip = self.kubectl.jsonpath(
            ["service", self.ingress_service, "-n", self.namespace],
            "{.status.loadBalancer.ingress[0].ip}",
        )
        if ip == self.expected_lb_ip:
            report.add("LoadBalancer IP", PASS, ip)
        else:
            report.add("LoadBalancer IP", FAIL, f"Expected {self.expected_lb_ip}, got '{ip}'")

    def check_virtual_services(self, report: IstioReport) -> None:
        for name, namespace in self.virtual_services:
            found = self.kubectl.resource_exists("virtualservice", name, namespace)
            report.add(f"VirtualService {name}", PASS if found else FAIL, "Configured" if found else "Not Found")

    def check_internal_dns(self, report: IstioReport) -> None:
        host = f"{self.ingress_service}.{self.namespace}.svc.cluster.local"
        ok = self.kubectl.run_pod("test-dns", "busybox", ["nslookup", host])
        report.add("Internal DNS resolution", PASS if ok else FAIL, host)

    def validate(self) -> IstioReport:
        logger.info("🚀 Istio ingress-only deployment validation")
        report = IstioReport()
        self.check_pods(report)
        self.check_certificate(report)
        self.check_gateways(report)
        self.check_load_balancer(report)
        self.check_virtual_services(report)
        self.check_internal_dns(report)
        return report
