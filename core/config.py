"""
Configuration constants for the fire risk monitor.

This module contains the tunable parameters for risk classification, alerting,
source simulation and hardware polling. Process-level settings read from the
environment live in core.settings.
"""

# ============================================================================
# Risk Classification Configuration
# ============================================================================

# Temperature bands in °C (inclusive min, inclusive max)
LOW_RISK_RANGE = (0, 30)
MODERATE_RISK_RANGE = (31, 40)
HIGH_RISK_RANGE = (41, 50)
EXTREME_RISK_RANGE = (51, 100)

# ============================================================================
# Alerting Configuration
# ============================================================================

ALERT_COOLDOWN_SECONDS = 15 * 60

# ============================================================================
# Orchestration Configuration
# ============================================================================

DEFAULT_POLL_INTERVAL_SECONDS = 60
STOP_TIMEOUT_SECONDS = 5.0
RECENT_READINGS_LIMIT = 100

# ============================================================================
# Simulated Source Configuration
# ============================================================================

SIM_BASE_TEMPERATURE = 25.0
SIM_BASE_HUMIDITY = 65.0
SIM_TEMPERATURE_VOLATILITY = 0.1
SIM_HUMIDITY_VOLATILITY = 0.05

# Bases are re-randomized inside these ranges on initialize()
SIM_INIT_TEMPERATURE_RANGE = (20.0, 30.0)
SIM_INIT_HUMIDITY_RANGE = (50.0, 80.0)

# Random-walk clamps
SIM_TEMPERATURE_BOUNDS = (-10.0, 50.0)
SIM_HUMIDITY_BOUNDS = (0.0, 100.0)

# Humidity drifts towards lower values as temperature rises above the pivot
SIM_HUMIDITY_PIVOT_TEMPERATURE = 25.0
SIM_HUMIDITY_COUPLING = 0.2

# Adversarial bands: [low, high)
ELEVATED_TEMPERATURE_BAND = (41.0, 50.0)
SEVERE_TEMPERATURE_BAND = (51.0, 60.0)
ADVERSARIAL_HUMIDITY_BAND = (10.0, 30.0)

# ============================================================================
# Hardware Source Configuration
# ============================================================================

SERIAL_BAUD_RATE = 115200
SERIAL_READ_TIMEOUT_SECONDS = 2.0
SERIAL_REQUEST = b"READ\n"
SERIAL_READING_PREFIX = "READING:"
SERIAL_ERROR_PREFIX = "ERROR:"
SERIAL_REPLY_QUEUE_SIZE = 16

# ============================================================================
# Prediction Configuration
# ============================================================================

# Dummy predictor weighting (temperature vs. dryness)
RULE_TEMPERATURE_WEIGHT = 0.7
RULE_DRYNESS_WEIGHT = 0.3

# Probability cut-offs used to map a probability onto a category
PROBABILITY_CUTOFFS = (0.25, 0.5, 0.75)

# Logistic predictor
LOGISTIC_L2_PENALTY = 1e-2
LOGISTIC_MAX_ITER = 500
LOGISTIC_TEST_FRACTION = 0.2
LOGISTIC_MIN_SAMPLES = 5
