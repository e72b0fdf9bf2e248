#+
# Setuptools script to install DBusCall. Make sure setuptools
# <https://setuptools.pypa.io/en/latest/index.html> is installed.
# Invoke from the command line in this directory as follows:
#
#     python3 setup.py build
#     sudo python3 setup.py install
#
# Written by Lawrence D'Oliveiro <ldo@geek-central.gen.nz>.
#-

import sys
import ctypes.util
import setuptools
from setuptools.command.build_py import \
    build_py as std_build_py

class my_build_py(std_build_py) :
    "customization of build to perform additional validation."

    def run(self) :
        if ctypes.util.find_library("dbus-1") == None :
            sys.stderr.write \
              (
                "warning: libdbus-1 not found; dbuscall values and signatures"
                " will work, but bus connections will not.\n"
              )
        #end if
        super().run()
    #end run

#end my_build_py

setuptools.setup \
  (
    name = "DBusCall",
    version = "0.1",
    description = "blocking D-Bus method calls over libdbus, for Python 3.5 or later",
    long_description = "typed D-Bus values, message marshalling and blocking method calls"
        " over private bus connections, using libdbus via ctypes",
    author = "Lawrence D'Oliveiro",
    author_email = "ldo@geek-central.gen.nz",
    url = "https://github.com/ldo/dbussy",
    license = "LGPL v2.1+",
    python_requires = ">=3.5",
    py_modules = ["dbuscall", "libdbus"],
    extras_require =
        {
            "test" : ["pytest"],
        },
    cmdclass =
        {
            "build_py" : my_build_py,
        },
  )
