"""Parse provider names, verify provider checksums and find, download and version-check provider plugins."""