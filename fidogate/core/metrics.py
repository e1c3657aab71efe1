"""
Prometheus metrics for WebAuthn ceremonies
"""

from prometheus_client import Counter

ceremonies_total = Counter(
    'fidogate_ceremonies_total',
    'WebAuthn ceremonies by kind and outcome',
    ['kind', 'outcome']
)

replay_rejections_total = Counter(
    'fidogate_replay_rejections_total',
    'Assertions rejected because the signature counter did not increase'
)

metadata_lookup_failures_total = Counter(
    'fidogate_metadata_lookup_failures_total',
    'Authenticator metadata lookups that raised and fell back'
)


def record_ceremony(kind: str, outcome: str) -> None:
    ceremonies_total.labels(kind=kind, outcome=outcome).inc()
