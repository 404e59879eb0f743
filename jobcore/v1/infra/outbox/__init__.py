"""
Transactional outbox for outbound notifications.

Messages are staged together with their audit record and delivered by the
active worker, which deletes each message in the same commit that marks its
audit record sent or failed.
"""
