"""beamlink - serverless peer-to-peer file transfer over Wi-Fi and Bluetooth"""

__version__ = "1.0.0"
