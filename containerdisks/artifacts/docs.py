"""Example guest configuration payloads published with the artifact descriptions."""

CLOUD_INIT = """#cloud-config
password: changeme
chpasswd: { expire: False }
"""

IGNITION = """{
  "ignition": {
    "version": "3.3.0"
  },
  "passwd": {
    "users": [
      {
        "name": "core",
        "sshAuthorizedKeys": [
          "ssh-ed25519 AAAA..."
        ]
      }
    ]
  }
}
"""
