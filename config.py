"""
AUV navigation core configuration.
"""

# Messaging fabric
TRANSPORT_CONFIG = {
    "servers": ["tcp://localhost:4222"],   # Broker endpoints, tried in order
    "broker_host": "0.0.0.0",              # Broker bind address
    "broker_port": 4222,                   # Broker bind port
    "connect_timeout": 2.0,                # Seconds per endpoint
}

# Per-process node settings
NODE_CONFIG = {
    "gps": {
        "name": "gps",
        "subscriber_queue_size": 1000,
    },
    "position": {
        "name": "ekf-position-estimator",
        "rate": 10.0,                      # Estimate republish rate (Hz)
        "subscriber_queue_size": 1000,
        "queue_size": 100,                 # Shared estimator queue
        "require_imu_calibration": False,  # Also wait for IMU sys calibration 3
    },
}

# EKF tuning
EKF_CONFIG = {
    "q_pos": 0.1,                          # Process noise, position
    "q_vel": 0.1,                          # Process noise, velocity
    "q_orient": 0.01,                      # Process noise, orientation
    "depth_noise": 0.01,                   # Depth measurement variance
    "velocity_noise": 0.1,                 # Speed measurement variance
    "gps_noise": {                         # GPS variance per link quality
        "excellent": 5.0,
        "good": 10.0,
    },
    "gps_noise_fallback": 20.0,            # Any other link quality
    "initial_covariance": [100.0, 100.0, 1.0, 10.0, 0.1, 0.1, 0.1, 0.1],
    "covariance_form": "standard",         # "standard" (I-KH)P or "joseph"
}

# GPS receiver on UART 0
GPS_SERIAL_CONFIG = {
    "port": "/dev/ttyS0",
    "baudrate": 9600,
    "timeout": 1.0,                        # Read timeout (s)
    "read_size": 256,                      # Bytes per read
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
