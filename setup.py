import setuptools

VERSION = '0.1.0'

setup_params = dict(
    name='cachedclient',
    version=VERSION,
    author='Kenneth VanderLinde',
    author_email='kwvanderlinde@gmail.com',
    url='https://github.com/kwvanderlinde/cachedclient',
    keywords='requests cache retry mock http client',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    description='A stateful HTTP client with response caching, retries, cookie persistence and mocking',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    install_requires=[
        'requests~=2.31',
        'defusedxml~=0.7.1',
        'pydantic~=2.5',
        'pydantic-settings~=2.1',
    ],
    extras_require={
        'dev': [
            'mockito~=1.4',
            'pytest~=7.4',
            'pytest-cov~=4.1',
            'ddt~=1.6',
        ]
    },
    entry_points={},
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 2 - Pre-Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Natural Language :: English',
        'Operating System :: OS Independent',

        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
    ],
)


if __name__ == '__main__':
    setuptools.setup(**setup_params)
