# -*- coding: utf-8 -*-

from palworld import cli


cli.main()
