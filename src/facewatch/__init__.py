"""
facewatch - camera motion to face recognition webhook bridge

On a motion notification facewatch opens the camera stream, collects face
crops through an external detector, searches them in an AWS Rekognition
collection, and reports notifications and matches to a webhook.
"""

__version__ = "0.1.0"
