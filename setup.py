from setuptools import setup

with open('README.rst') as f:
    readme = f.read()

setup(
    name='adb_host',
    version='0.1.0',
    description='A Python client for the ADB server: shell commands, FileSync and host queries.',
    long_description=readme,
    keywords=['adb', 'android'],
    author='Jeff Irion',
    author_email='jefflirion@users.noreply.github.com',
    packages=['adb_host', 'adb_host.transport'],
    install_requires=['aiofiles>=0.8.0'],
    python_requires='>=3.7',
    classifiers=['Operating System :: OS Independent',
                 'License :: OSI Approved :: Apache Software License',
                 'Programming Language :: Python :: 3'],
    test_suite='tests'
)
