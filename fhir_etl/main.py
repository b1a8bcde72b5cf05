import sys

from fhir_etl.application import main

if __name__ == "__main__":
    sys.exit(main())
