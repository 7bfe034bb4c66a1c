from setuptools import find_packages, setup

setup(
    name='opcua-mqtt-gateway',
    version='1.0.0',
    description='Config-driven OPC UA <-> MQTT gateway daemon',
    author='isantolin',
    author_email='',
    packages=find_packages(include=['opcuagateway', 'opcuagateway.*']),
    python_requires='>=3.12',
    install_requires=[
        'aiomqtt>=2.0',
        'asyncua>=1.1',
        'marshmallow>=3.20',
        'msgspec>=0.18',
        'prometheus-client>=0.20',
        'transitions>=0.9',
        'uvloop>=0.19',
    ],
    extras_require={
        'test': [
            'pytest>=8',
            'pytest-asyncio>=0.23',
        ],
    },
    entry_points={
        'console_scripts': [
            'opcua-mqtt-gateway=opcuagateway.daemon:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
