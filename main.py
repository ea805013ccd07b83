"""Root entrypoint shim for the VeilFlow CLI."""

from veilflow import main

if __name__ == "__main__":
    main()
