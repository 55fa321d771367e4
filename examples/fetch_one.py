# Resolve one magnet link over the live DHT and list its files.
import logging
import sys

from magnet_uri import MagnetError
from metadata_source import DHTMetadataSource, ResolveError
from result_reporter import largest_file

logging.basicConfig(level=logging.INFO, format="# %(message)s")

magnet = sys.argv[1] if len(sys.argv) > 1 else "magnet:?xt=urn:btih:87a1e5787d6521268aa2b5045137a298f609cade"

source = DHTMetadataSource()
try:
    handle = source.begin_resolve(magnet)
    if not handle.ready.wait(120):
        print("no metadata within 120s (peers offline or not supporting ut_metadata)")
        sys.exit(1)
    meta = handle.metadata()
except (MagnetError, ResolveError) as e:
    print("lookup failed:", e)
    sys.exit(1)
finally:
    source.close()

print("Name:", meta.name)
print("Files:")
for f in meta.files[:10]:
    print("  ", f.length, f.path)
print("Largest:", largest_file(meta))
