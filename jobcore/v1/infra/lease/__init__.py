"""
Single-active-worker coordination.

Workers contend for a row in ``job_worker_leases``; the holder renews it on
a heartbeat and everyone else waits in standby until it expires.
"""
