import os


def _split_csv(value: str):
    return [item.strip() for item in value.split(',') if item.strip()]


def format_interval(seconds: int) -> str:
    """Render an interval in seconds the way VEX repository manifests expect (e.g. 30m)"""
    if seconds > 0 and seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds > 0 and seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


class Config:
    def __init__(self):
        self.port = int(os.getenv('VEXHUB_PORT', '8080'))
        self.cert_path = os.getenv('VEXHUB_CERT_PATH', '')
        self.key_path = os.getenv('VEXHUB_KEY_PATH', '')
        self.log_level = os.getenv('VEXHUB_LOG_LEVEL', 'INFO')

        # Drives both the aggregation timer and the manifest update_interval
        self.update_interval = int(os.getenv('VEXHUB_UPDATE_INTERVAL', '15'))  # seconds

        # Fragment store location; the ConfigMap name doubles as the archive file name
        self.store_namespace = os.getenv('VEXHUB_STORE_NAMESPACE', 'default')
        self.store_name = os.getenv('VEXHUB_STORE_NAME', 'vex8s.json')
        self.conflict_retries = int(os.getenv('VEXHUB_CONFLICT_RETRIES', '5'))

        # Identity written into every generated VEX document
        self.author = os.getenv('VEXHUB_AUTHOR', 'vex8s-controller')
        self.author_role = os.getenv('VEXHUB_AUTHOR_ROLE', 'Kubernetes Controller')
        self.tooling = os.getenv('VEXHUB_TOOLING', 'vex8s')

        # Where sbomscanner publishes VulnerabilityReports
        self.report_group = os.getenv('VEXHUB_REPORT_GROUP', 'storage.sbomscanner.kubewarden.io')
        self.report_version = os.getenv('VEXHUB_REPORT_VERSION', 'v1alpha1')
        self.report_plural = os.getenv('VEXHUB_REPORT_PLURAL', 'vulnerabilityreports')

        self.excluded_namespaces = _split_csv(os.getenv('VEXHUB_EXCLUDED_NAMESPACES', ''))

    @property
    def update_interval_label(self) -> str:
        return format_interval(self.update_interval)
