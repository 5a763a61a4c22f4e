#!/usr/bin/env python3
#
# (C) 2024, Nicolai Langfeldt, Schibsted Products and Technology
#
# Delete a tag from a docker registry. See registryrm.py or -h.
#

import registryrm

if __name__ == "__main__":
    registryrm.main()
