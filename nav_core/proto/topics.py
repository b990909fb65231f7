"""
Topic names used on the messaging fabric.
"""

GPS_TOPIC = 'auv.hardware.gps'
IMU_TOPIC = 'auv.hardware.imu'
DEPTH_TOPIC = 'auv.hardware.depth'
SPEED_ESTIMATE_TOPIC = 'auv.position.speed_estimate'
POSITION_ESTIMATE_TOPIC = 'auv.position.estimate'
