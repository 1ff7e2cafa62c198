"""Application modules.

- transcoding: HLS packaging pipeline, job tracking and video endpoints
"""
