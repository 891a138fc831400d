# madmin

A Python client for the administration API of a MinIO object storage
server. It signs every request with AWS Signature V4, retries transient
failures, and turns server error replies into `ErrorResponse` exceptions.

## What it covers

- **Server configuration**: read and replace the whole configuration, get,
  set and delete single keys, browse the help for each sub-system, and list,
  restore or clear entries in the configuration history. Configuration sent
  to and received from the server is encrypted with a key derived from the
  secret key (`madmin.encrypt`).
- **Groups**: add or remove members, describe a group, list groups, and
  enable or disable them (`GroupStatus`).
- **Healing**: start, poll and stop heal sequences (`HealOpts`,
  `HealScanMode`), and read the background heal state (`BgHealState`).
  `HealResultItem` counts drives that were online, offline, corrupt or
  missing before and after a heal.
- **Logs and bandwidth**: stream console log entries (`LogInfo`) and
  replication bandwidth reports (`Report`) as generators.
- **Health**: request a cluster health report (`HealthDataType`,
  `HealthInfo`), and gather local CPU, partition, OS, memory and process
  information with the functions in `madmin.sysinfo`.

## Connecting

```python
from madmin.client import new

secret_key = "secret"
client = new("localhost:9000", "minio-admin", secret_key, True)
client.set_app_info("my-tool", "1.0")

for name in client.list_groups():
    print(name)
```

`new_with_options(endpoint, options)` does the same from an `Options`
value. Pass `secure=False` as the last argument to `new` to use plain HTTP.

## Errors

Every failed call raises `madmin.errors.ErrorResponse`, which carries the
server's `code`, `message`, `request_id` and related fields. Invalid
arguments given to the client itself are reported with an
`ErrorResponse` whose code is `InvalidArgument`.

```python
from madmin.errors import ErrorResponse

try:
    client.get_group_description("editors")
except ErrorResponse as err:
    print(err.code, err.message)
```

## Tracing

`client.trace_on(stream)` writes each HTTP request and response header to
`stream` (standard output when none is given), with the access key and
signature in the `Authorization` header redacted. `client.trace_off()`
stops it.

## Encrypting configuration data

The functions used for configuration traffic are available directly:

```python
from madmin.encrypt import encrypt_data

password = "password"
ciphertext = encrypt_data(password, b'{"region": "us-east-1"}')
```

The ciphertext is a 32-byte salt, one byte naming the key derivation and
cipher, an 8-byte nonce, and the sealed data. `decrypt_data` reverses it
and raises `MaliciousDataError` when the data was not produced with the
same password or has been altered. `fips_enabled()` reports whether only
PBKDF2 and AES-GCM are used.

## Local system information

```python
from madmin.sysinfo import get_cpus, get_mem_info

print(get_cpus("node-1").to_dict())
print(get_mem_info("node-1").to_dict())
```

Each of these returns a record with the node address and, when something
could not be read, an `error` string instead of raising.