"""
Prometheus metrics
"""

from prometheus_client import Counter, Gauge

sessions_active = Gauge('sleep_preventer_sessions_active', 'Registered reporter sessions')
prevention_active = Gauge('sleep_preventer_prevention_active', 'System sleep currently disabled')
safety_tripped = Gauge('sleep_preventer_safety_tripped', 'Thermal safety latch tripped')

toggles = Counter('sleep_preventer_toggles', 'Sleep toggle invocations', ['result'])
sessions_reaped = Counter('sleep_preventer_sessions_reaped', 'Sessions removed by the reaper', ['reason'])
thermal_trips = Counter('sleep_preventer_thermal_trips', 'Thermal safety trips')
