"""Enrollment audit tooling for a device-provisioning registry.

Counts registrations across enrollment groups and individual enrollments,
creates enrollment-group fixtures with provisioned devices, and tears them
down again across the provisioning registry and the device registry.
"""
