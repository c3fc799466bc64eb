import asyncio
import logging

import uvicorn
from kubernetes import client, config as kube_config

from vexhub.config import Config
from vexhub.controller.manager import PodController
from vexhub.controller.pod_controller import PodVEXReconciler
from vexhub.core.app import create_app
from vexhub.services.aggregator import FragmentAggregator
from vexhub.services.finding_matcher import FindingMatcher
from vexhub.services.fragment_store import ConfigMapFragmentStore
from vexhub.services.mitigation import MitigationFilter, SecurityContextMitigation
from vexhub.services.snapshot import SnapshotStore
from vexhub.services.vex_emitter import VEXEmitter
from vexhub.vex.openvex import OpenVEXFormat, VexInfo

logger = logging.getLogger(__name__)


def init_kubernetes_client():
    """Load in-cluster config, falling back to the local kubeconfig"""
    try:
        kube_config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes config")
    except kube_config.ConfigException:
        try:
            kube_config.load_kube_config()
            logger.info("Using local kubeconfig")
        except kube_config.ConfigException:
            logger.error("Could not configure Kubernetes client")
            raise


async def run(cfg: Config):
    init_kubernetes_client()
    v1 = client.CoreV1Api()
    custom_api = client.CustomObjectsApi()

    info = VexInfo(author=cfg.author, role=cfg.author_role, tooling=cfg.tooling)
    store = ConfigMapFragmentStore(v1, cfg.store_namespace, cfg.store_name, cfg.conflict_retries)
    snapshots = SnapshotStore()

    logger.info("Setting up VEX Hub repository")
    aggregator = FragmentAggregator(
        store, snapshots, OpenVEXFormat(info),
        location=cfg.store_name, interval=cfg.update_interval,
    )
    reconciler = PodVEXReconciler(
        v1,
        FindingMatcher(custom_api, cfg.report_group, cfg.report_version, cfg.report_plural),
        MitigationFilter(SecurityContextMitigation()),
        VEXEmitter(store, info),
    )
    controller = PodController(v1, reconciler, excluded_namespaces=cfg.excluded_namespaces)

    server_config = uvicorn.Config(
        create_app(cfg, snapshots),
        host="0.0.0.0",
        port=cfg.port,
        ssl_certfile=cfg.cert_path or None,
        ssl_keyfile=cfg.key_path or None,
        log_level=cfg.log_level.lower(),
    )
    server = uvicorn.Server(server_config)

    scheme = "https" if cfg.cert_path else "http"
    logger.info(f"VEX Hub repository server starting on port {cfg.port}")
    logger.info(f"Manifest: {scheme}://localhost:{cfg.port}/.well-known/vex-repository.json")
    logger.info(f"Archive: {scheme}://localhost:{cfg.port}/vex-data.tar.gz")

    await asyncio.gather(server.serve(), aggregator.run(), controller.start())


def main():
    cfg = Config()
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("Starting VEX Hub...")
    try:
        asyncio.run(run(cfg))
    except KeyboardInterrupt:
        logger.info("Shutting down VEX Hub...")


if __name__ == "__main__":
    main()
