import asyncio
import logging
import threading
import time
import traceback
from typing import Iterable

from kubernetes import watch
from kubernetes.client.rest import ApiException

from vexhub.controller.pod_controller import PodVEXReconciler
from vexhub.controller.work_queue import WorkQueue
from vexhub.services.prometheus_metrics import RECONCILES_TOTAL

logger = logging.getLogger(__name__)

# System namespaces to skip
SYSTEM_NAMESPACES = ['kube-system', 'kube-public', 'kube-node-lease']


class PodController:
    """Feeds pod watch events into a work queue drained by reconcile workers."""

    def __init__(self, core_api, reconciler: PodVEXReconciler, queue: WorkQueue = None,
                 excluded_namespaces: Iterable[str] = (), workers: int = 2):
        self.v1 = core_api
        self.reconciler = reconciler
        self.queue = queue if queue is not None else WorkQueue()
        self.excluded_namespaces = set(SYSTEM_NAMESPACES) | set(excluded_namespaces)
        self.workers = workers

    def is_namespace_excluded(self, namespace: str) -> bool:
        return namespace in self.excluded_namespaces

    def enqueue_event(self, event):
        pod = event['object']
        namespace = pod.metadata.namespace
        if self.is_namespace_excluded(namespace):
            return
        logger.debug(f"Pod event: {event['type']} {namespace}/{pod.metadata.name}")
        self.queue.add(f"{namespace}/{pod.metadata.name}")

    def _watch_sync(self, callback):
        """Run the pod watch forever in a thread, calling callback(event) for each event"""
        while True:
            try:
                logger.info("Starting Pod watch (sync thread)")
                w = watch.Watch()
                for event in w.stream(self.v1.list_pod_for_all_namespaces, timeout_seconds=300):
                    callback(event)
            except ApiException as e:
                logger.error(f"Pod watch API error: {e}, restarting...")
                time.sleep(5)
            except Exception as e:
                logger.error(f"Pod watch error: {e}, restarting...")
                logger.error(traceback.format_exc())
                time.sleep(5)

    async def process_next(self):
        """Reconcile one queued pod, re-queueing it with backoff on failure"""
        key = await self.queue.get()
        namespace, name = key.split('/', 1)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.reconciler.reconcile, namespace, name)
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            RECONCILES_TOTAL.labels(outcome="requeued").inc()
            logger.error(f"Reconcile of pod {key} failed: {e}; retrying in {delay:.0f}s")
        else:
            self.queue.forget(key)
            RECONCILES_TOTAL.labels(outcome="succeeded").inc()
        finally:
            self.queue.done(key)

    async def _worker(self, number: int):
        logger.info(f"Reconcile worker {number} started")
        while True:
            await self.process_next()

    async def start(self):
        """Watch pods and reconcile them until cancelled"""
        loop = asyncio.get_running_loop()

        def on_event(event):
            loop.call_soon_threadsafe(self.enqueue_event, event)

        watch_thread = threading.Thread(
            target=self._watch_sync, args=(on_event,), daemon=True, name="pod-watch-thread"
        )
        watch_thread.start()
        logger.info(f"Pod watch thread started: {watch_thread.name}")

        tasks = [asyncio.create_task(self._worker(n)) for n in range(self.workers)]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
